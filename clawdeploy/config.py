import os
import tempfile
from dataclasses import dataclass, fields
from pathlib import Path


class Config:
    """Base configuration"""

    # Secrets
    SECRETS_PREFIX = os.environ.get('SECRETS_PREFIX') or 'openclaw'
    SECRETS_PROVIDER = os.environ.get('SECRETS_PROVIDER') or 'gcp'
    SECRETS_LABEL = os.environ.get('SECRETS_LABEL') or 'openclaw'
    # Passphrase for the local secret vault (only used by the 'local' provider)
    SECRETS_PASSPHRASE = os.environ.get('SECRETS_PASSPHRASE')
    LOCAL_SECRETS_FILE = os.environ.get('LOCAL_SECRETS_FILE') or os.path.expanduser('~/.config/clawdeploy/secrets.json')

    # Cloud
    GCP_PROJECT_ID = os.environ.get('GCP_PROJECT_ID')
    AWS_REGION = os.environ.get('AWS_REGION') or 'us-east-1'

    # Backups
    STORAGE_PROVIDER = os.environ.get('STORAGE_PROVIDER') or 'gcs'
    BACKUP_BUCKET = os.environ.get('BACKUP_BUCKET') or os.environ.get('GCP_BUCKET_NAME')
    BACKUP_RETENTION_DAYS = int(os.environ.get('BACKUP_RETENTION_DAYS') or 90)
    BACKUP_HOURS = int(os.environ.get('BACKUP_HOURS') or 6)
    LOCAL_BACKUP_DIR = os.environ.get('LOCAL_BACKUP_DIR') or '/data/local_backups'

    # Workload
    CONTAINER_NAME = os.environ.get('CONTAINER_NAME') or 'openclaw-openclaw-gateway-1'
    CONTAINER_DATA_DIR = os.environ.get('CONTAINER_DATA_DIR') or '/home/node/.openclaw'
    OPENCLAW_HOME = os.environ.get('OPENCLAW_HOME') or os.path.expanduser('~')
    OPENCLAW_DIR = os.environ.get('OPENCLAW_DIR') or os.path.join(OPENCLAW_HOME, '.openclaw')
    OPENCLAW_REPO = os.environ.get('OPENCLAW_REPO') or os.path.join(OPENCLAW_HOME, 'openclaw')

    # UID/GID 1000 is the container's 'node' user
    RUNTIME_UID = int(os.environ.get('RUNTIME_UID') or 1000)
    RUNTIME_GID = int(os.environ.get('RUNTIME_GID') or 1000)

    # tmpfs mount holding the generated .env
    SECRETS_DIR = os.environ.get('SECRETS_DIR') or '/run/openclaw-secrets'

    # Upload/Temp
    TEMP_DIR = os.environ.get('TEMP_DIR') or tempfile.gettempdir()

    # Logging
    DEBUG = False
    LOG_FILE = os.environ.get('LOG_FILE')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Keep everything on the local machine for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SECRETS_PROVIDER = 'local'
    STORAGE_PROVIDER = 'local'
    BACKUP_BUCKET = 'dev'
    LOCAL_BACKUP_DIR = os.path.join(DATA_DIR, 'local_backups')
    LOCAL_SECRETS_FILE = os.path.join(DATA_DIR, 'secrets.json')
    SECRETS_PASSPHRASE = os.environ.get('SECRETS_PASSPHRASE') or 'development'
    SECRETS_DIR = os.path.join(DATA_DIR, 'secrets')
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOG_FILE = os.path.join(DATA_DIR, 'logs', 'clawdeploy.log')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


@dataclass(frozen=True)
class BackupSettings:
    """
    Explicit settings handed to every backup, restore and secrets component.

    Built once from a Config class; components never read the environment
    themselves.
    """

    secrets_prefix: str = 'openclaw'
    secrets_provider: str = 'gcp'
    secrets_label: str = 'openclaw'
    secrets_passphrase: str = None
    local_secrets_file: str = None
    gcp_project_id: str = None
    aws_region: str = 'us-east-1'
    storage_provider: str = 'gcs'
    bucket: str = None
    retention_days: int = 90
    backup_hours: int = 6
    local_backup_dir: str = None
    container_name: str = 'openclaw-openclaw-gateway-1'
    container_data_dir: str = '/home/node/.openclaw'
    openclaw_home: str = None
    openclaw_dir: str = None
    openclaw_repo: str = None
    runtime_uid: int = 1000
    runtime_gid: int = 1000
    secrets_dir: str = '/run/openclaw-secrets'
    temp_dir: str = None
    debug: bool = False
    log_file: str = None

    @classmethod
    def from_config(cls, config_class=None, **overrides) -> 'BackupSettings':
        """
        Build settings from a Config class.

        Args:
            config_class: Config subclass (default: ProductionConfig)
            **overrides: Values that take precedence over the config class

        Returns:
            BackupSettings instance
        """
        config_class = config_class or config['default']
        values = {}
        for field in fields(cls):
            attr = _CONFIG_ATTRS.get(field.name, field.name.upper())
            if hasattr(config_class, attr):
                values[field.name] = getattr(config_class, attr)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def home_path(self) -> Path:
        return Path(self.openclaw_home or os.path.expanduser('~'))

    @property
    def data_path(self) -> Path:
        return Path(self.openclaw_dir or self.home_path / '.openclaw')

    @property
    def repo_path(self) -> Path:
        return Path(self.openclaw_repo or self.home_path / 'openclaw')

    @property
    def temp_path(self) -> Path:
        return Path(self.temp_dir or tempfile.gettempdir())


# Config attributes whose names differ from the settings field
_CONFIG_ATTRS = {
    'bucket': 'BACKUP_BUCKET',
    'retention_days': 'BACKUP_RETENTION_DAYS',
}
