"""
gk config - Show the resolved configuration and where each value came from.
"""

from pathlib import Path

from gatekeeper.lib.config import FIELDS, Config


def cmd_config(args, project_dir: Path, config: Config):
    print(f"Project: {project_dir}")
    print("=" * 60)
    for key, section, name, _kind, _default in FIELDS:
        value = getattr(getattr(config, section), name)
        if isinstance(value, (list, tuple)):
            value = ",".join(value)
        source = config.sources.get(key, "default")
        print(f"  {key:<42} {str(value):<20} ({source})")
    return 0
