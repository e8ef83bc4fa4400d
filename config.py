import os
import configparser
from pathlib import Path
import sys

class Config:
    if getattr(sys, 'frozen', False):
        BASE_DIR = Path(sys.executable).parent
    else:
        BASE_DIR = Path(__file__).resolve().parent

    RESOURCE_DIR = Path(getattr(sys, '_MEIPASS', BASE_DIR))

    CONFIG_FILE_RUNTIME = BASE_DIR / 'db_config.ini'
    CONFIG_FILE_BUNDLED = RESOURCE_DIR / 'db_config.ini'

    @staticmethod
    def get_log_dir():
        """Get log directory with write permissions."""
        # 1. Check environment variable
        env_log = os.environ.get('SALESTRACK_LOG_DIR')
        if env_log:
            log_dir = Path(env_log)
            try:
                log_dir.mkdir(parents=True, exist_ok=True)
                return log_dir
            except OSError:
                pass

        # 2. User data directory
        try:
            if os.name == 'nt':
                base = Path(os.environ.get('APPDATA', Path.home() / 'AppData' / 'Roaming'))
                log_dir = base / 'SalesTrack' / 'logs'
            else:
                log_dir = Path.home() / '.local' / 'share' / 'salestrack' / 'logs'
            log_dir.mkdir(parents=True, exist_ok=True)
            return log_dir
        except OSError:
            pass

        # 3. Fallback: BASE_DIR/logs, then the temp dir
        try:
            log_dir = Path(__file__).resolve().parent / 'logs'
            log_dir.mkdir(parents=True, exist_ok=True)
            return log_dir
        except OSError:
            import tempfile
            return Path(tempfile.gettempdir()) / 'salestrack_logs'

    LOG_DIR = get_log_dir.__func__()
    LOG_FILE = LOG_DIR / 'salestrack.log'

    @staticmethod
    def _user_secret_path():
        if os.name == 'nt':
            base = Path(os.environ.get('APPDATA', str(Path.home() / 'AppData' / 'Roaming')))
            return base / 'salestrack' / '.secret_key'
        return Path.home() / '.salestrack' / '.secret_key'

    SECRET_FILE = BASE_DIR / '.secret_key'
    USER_SECRET_FILE = _user_secret_path.__func__()

    config_parser = configparser.ConfigParser()
    if CONFIG_FILE_RUNTIME.exists():
        config_parser.read(CONFIG_FILE_RUNTIME)
    elif CONFIG_FILE_BUNDLED.exists():
        config_parser.read(CONFIG_FILE_BUNDLED)

    if config_parser.sections():
        db_host = config_parser.get('database', 'host', fallback='localhost')
        db_port = config_parser.get('database', 'port', fallback='3306')
        db_user = config_parser.get('database', 'username', fallback='salestrack_app')
        db_pass = config_parser.get('database', 'password', fallback='')
        db_name = config_parser.get('database', 'database', fallback='salestrack')
        SQLALCHEMY_DATABASE_URI = f'mysql+pymysql://{db_user}:{db_pass}@{db_host}:{db_port}/{db_name}?charset=utf8mb4'
        DEFAULT_CURRENCY = config_parser.get('app', 'default_currency', fallback='USD')
        INVENTORY_LOG_LIMIT = config_parser.getint('inventory', 'log_limit', fallback=200)
        DEBUG = config_parser.getboolean('app', 'debug', fallback=False)
    else:
        SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', '')
        DEFAULT_CURRENCY = os.environ.get('DEFAULT_CURRENCY', 'USD')
        INVENTORY_LOG_LIMIT = int(os.environ.get('INVENTORY_LOG_LIMIT', 200))
        DEBUG = os.environ.get('FLASK_DEBUG', 'False').lower() == 'true'

    if not SQLALCHEMY_DATABASE_URI:
        print("WARNING: DATABASE_URL not configured.  Using SQLite fallback.")
        SQLALCHEMY_DATABASE_URI = f'sqlite:///{BASE_DIR / "salestrack.db"}'

    # Hard ceiling for the inventory log endpoint regardless of the requested limit
    INVENTORY_LOG_MAX_LIMIT = 5000

    SECRET_KEY = None
    if config_parser.sections():
        SECRET_KEY = config_parser.get('app', 'secret_key', fallback=None)
        if SECRET_KEY == 'AUTO_GENERATED':
            SECRET_KEY = None

    if not SECRET_KEY:
        try:
            if SECRET_FILE.exists():
                SECRET_KEY = SECRET_FILE.read_text().strip()
            else:
                USER_SECRET_FILE.parent.mkdir(parents=True, exist_ok=True)
                if USER_SECRET_FILE.exists():
                    SECRET_KEY = USER_SECRET_FILE.read_text().strip()
                else:
                    SECRET_KEY = os.urandom(32).hex()
                    USER_SECRET_FILE.write_text(SECRET_KEY)
                    try:
                        os.chmod(USER_SECRET_FILE, 0o600)
                    except OSError:
                        pass
        except OSError:
            SECRET_KEY = os.urandom(32).hex()

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    if SQLALCHEMY_DATABASE_URI.startswith('mysql'):
        SQLALCHEMY_ENGINE_OPTIONS = {
            'pool_pre_ping': True,
            'pool_recycle': 280,
            'pool_size': 10,
            'max_overflow': 20,
            'connect_args': {
                'charset': 'utf8mb4',
                'connect_timeout': 10,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {'pool_pre_ping': True}

    CACHE_TYPE = 'SimpleCache'
    CACHE_DEFAULT_TIMEOUT = 300
    RATELIMIT_STORAGE_URI = 'memory://'

    SESSION_COOKIE_SECURE = False
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = 3600


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SECRET_KEY = 'test-secret'
    CACHE_TYPE = 'NullCache'
    RATELIMIT_ENABLED = False
