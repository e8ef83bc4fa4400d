import configparser
import sys
from pathlib import Path


def get_base_dir():
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    return Path(__file__).parent


def run_setup(base_dir=None):
    print("=" * 60)
    print("SalesTrack - First Time Setup")
    print("=" * 60)

    config = configparser.ConfigParser()

    # Database settings
    print("\n[DATABASE CONFIGURATION]")
    db_host = input("Database Host [localhost]: ").strip() or 'localhost'
    db_port = input("Database Port [3306]: ").strip() or '3306'
    db_user = input("Database Username: ").strip()
    db_pass = input("Database Password: ").strip()
    db_name = input("Database Name [salestrack]: ").strip() or 'salestrack'

    config['database'] = {
        'host': db_host,
        'port': db_port,
        'username': db_user,
        'password': db_pass,
        'database': db_name
    }

    # App settings
    print("\n[APPLICATION SETTINGS]")
    currency = (input("Default Currency [USD]: ").strip() or 'USD').upper()

    config['app'] = {
        'secret_key': 'AUTO_GENERATED',
        'default_currency': currency,
        'debug': 'False'
    }

    # Inventory settings
    log_limit = input("Inventory log page size [200]: ").strip() or '200'
    if not log_limit.isdigit():
        log_limit = '200'
    config['inventory'] = {
        'log_limit': log_limit
    }

    config_file = Path(base_dir or get_base_dir()) / 'db_config.ini'
    with open(config_file, 'w') as f:
        config.write(f)

    print(f"\nConfiguration saved to {config_file}")
    print("\nYou can now start the server with: python run.py")
    return config_file


if __name__ == '__main__':
    run_setup()
