# tsvshuttle/defaults.py
"""Default settings - no imports to avoid circular dependencies."""

settings = {
    'default_delimiter': '\t',
    'work_dir': '.',              # where per-table files are staged
    'retain_on_failure': True,    # keep a failed table's local files for post-mortem
    'bcp_path': 'bcp',
    'bcp_options': [],           # extra bcp arguments, e.g. ['-u'] to trust the server certificate
    'az_path': 'az',
    'storage_scope': 'https://storage.azure.com/.default',
    'login': {
        'timeout': 300,           # seconds to wait for a device-code login
        'initial_interval': 5,
        'max_interval': 30,
        'backoff': 1.5,
    },
    'logging': {
        'directory': './logs',
        'level': 'INFO',
        'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        'timestamp_format': '%Y-%m-%d %H:%M:%S',
        'filename_format': '%Y%m%d_%H%M%S',  # start-time part of the run log name
        'split_errors': True,
        'console': True,
        'retention_days': 30,
    }
}
