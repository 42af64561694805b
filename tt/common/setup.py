import os
from pathlib import Path
from dataclasses import dataclass

# Lil helper function to create missing directories if missing, and optionally error out when a path
# doesn't exist.
def ensure_directory(path: Path,must_exist=False):
    if must_exist:
        if not path.exists():
            raise FileNotFoundError(f"Required directory is missing: {path}")
        if not path.is_dir():
            raise NotADirectoryError(f"Expected a directory, got a file: {path}")
    else:
        path.mkdir(parents=True,exist_ok=True)
    return path

# Picks the folder that holds all user-specific data. TT_DATA_DIR always wins, then the roaming appdata folder on
# windows, then a dotfolder in the user's home.
def resolve_data_root():
    override = os.getenv("TT_DATA_DIR")
    if override:
        return Path(override)
    appdata = os.getenv("APPDATA")
    if appdata:
        return Path(appdata) / "TaskTimer"
    return Path.home() / ".tasktimer"

# Dataclass for accessing paths across program.
@dataclass(frozen=False)
class ProjectPaths:

    data: Path

    logs: Path
    current: Path
    exports: Path

    @staticmethod
    def build():
        # Folder for all tasktimer user-specific and session related stuff
        data = ensure_directory(resolve_data_root())

        # Folders within the data folder
        logs = ensure_directory(data / "logs")
        current = ensure_directory(data / "current")
        exports = ensure_directory(data / "exports")

        return ProjectPaths(
            data = data,
            logs = logs,
            current = current,
            exports = exports
        )
PATHS = ProjectPaths.build()
