import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

from models import Project

logger = logging.getLogger("novelwriter.store")


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding=encoding,
        dir=str(path.parent),
        delete=False,
    ) as tmp:
        tmp.write(content)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_path = Path(tmp.name)
    os.replace(tmp_path, path)


class ProjectStore:
    """JSON file per project under ``<root>/projects``, backups under ``<root>/backups``."""

    def __init__(self, root: Path):
        self.root = Path(root)

    @property
    def projects_dir(self) -> Path:
        path = self.root / "projects"
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def backups_dir(self) -> Path:
        path = self.root / "backups"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def project_file(self, project_id: str) -> Path:
        return self.projects_dir / f"{project_id}.json"

    def save(self, project: Project) -> None:
        project.updated_at = datetime.now()
        atomic_write_text(
            self.project_file(project.id),
            project.model_dump_json(indent=2),
        )

    def load(self, project_id: str) -> Optional[Project]:
        path = self.project_file(project_id)
        if not path.exists():
            return None
        try:
            return Project.model_validate_json(path.read_text(encoding="utf-8"))
        except Exception as exc:
            logger.warning("project load failed project_id=%s path=%s error=%s", project_id, path, exc)
            return None

    def list_ids(self) -> List[str]:
        return sorted(path.stem for path in self.projects_dir.glob("*.json"))

    def delete(self, project_id: str) -> bool:
        path = self.project_file(project_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def backup(self, project_id: str, payload: Any, reason: str) -> Path:
        stamp = datetime.now().strftime("%Y%m%dT%H%M%S%f")
        path = self.backups_dir / f"{project_id}-{reason}-{stamp}.json"
        atomic_write_text(path, json.dumps(payload, ensure_ascii=False, indent=2, default=str))
        logger.info("backup written project_id=%s reason=%s path=%s", project_id, reason, path)
        return path
