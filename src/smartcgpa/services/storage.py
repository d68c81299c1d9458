from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from smartcgpa.core.errors import NotFoundError
from smartcgpa.core.grading import GradingConfig
from smartcgpa.core.metrics import SubjectMetrics, compute_metrics
from smartcgpa.core.models import Semester, Subject

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


class Storage:
    """sqlite store for semesters and subjects.

    Subject rows carry cached metrics (total, grade point, weighted points)
    next to the raw marks. They are written through the engine on every
    change and can be rebuilt with ``recalculate`` after a config change.
    """

    def __init__(self, db_path: str = "data/smartcgpa.db") -> None:
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.executescript(
            """
            CREATE TABLE IF NOT EXISTS semesters (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id TEXT NOT NULL,
              name TEXT NOT NULL,
              is_active INTEGER NOT NULL DEFAULT 0,
              created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS subjects (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id TEXT NOT NULL,
              semester_id INTEGER NOT NULL,
              code TEXT NOT NULL,
              name TEXT NOT NULL,
              internal_marks REAL NOT NULL,
              external_marks REAL NOT NULL,
              credits INTEGER NOT NULL,
              total REAL,
              grade_point REAL,
              weighted_points REAL,
              updated_at TEXT NOT NULL,
              UNIQUE(semester_id, code),
              FOREIGN KEY(semester_id) REFERENCES semesters(id) ON DELETE CASCADE
            );
            """
        )
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _row_to_subject(row: sqlite3.Row) -> Subject:
        return Subject(
            identifier=row["code"],
            display_name=row["name"],
            internal_marks=row["internal_marks"],
            external_marks=row["external_marks"],
            credits=int(row["credits"]),
        )

    # Semesters

    def create_semester(self, user_id: str, name: str, make_active: bool = False) -> int:
        if not name.strip():
            raise StorageError("Semester name is required")

        has_active = self.get_active_semester(user_id) is not None
        with self.conn:
            if make_active and has_active:
                self.conn.execute("UPDATE semesters SET is_active=0 WHERE user_id=?", (user_id,))
            cur = self.conn.execute(
                "INSERT INTO semesters(user_id, name, is_active, created_at) VALUES(?,?,?,?)",
                (user_id, name.strip(), 1 if make_active or not has_active else 0, self._now()),
            )
        logger.info(f"Created semester {cur.lastrowid} for user {user_id}")
        return int(cur.lastrowid)

    def list_semesters(self, user_id: str) -> List[Dict]:
        cur = self.conn.execute("SELECT * FROM semesters WHERE user_id=? ORDER BY id", (user_id,))
        return [dict(row) for row in cur.fetchall()]

    def get_active_semester(self, user_id: str) -> Optional[Dict]:
        cur = self.conn.execute(
            "SELECT * FROM semesters WHERE user_id=? AND is_active=1 ORDER BY id DESC LIMIT 1",
            (user_id,),
        )
        row = cur.fetchone()
        return dict(row) if row else None

    def _require_semester(self, user_id: str, semester_id: int) -> sqlite3.Row:
        cur = self.conn.execute("SELECT * FROM semesters WHERE id=? AND user_id=?", (semester_id, user_id))
        row = cur.fetchone()
        if row is None:
            raise NotFoundError(f"Semester {semester_id} not found")
        return row

    def activate_semester(self, user_id: str, semester_id: int) -> None:
        self._require_semester(user_id, semester_id)
        with self.conn:
            self.conn.execute("UPDATE semesters SET is_active=0 WHERE user_id=?", (user_id,))
            self.conn.execute("UPDATE semesters SET is_active=1 WHERE id=? AND user_id=?", (semester_id, user_id))

    def delete_semester(self, user_id: str, semester_id: int) -> None:
        self._require_semester(user_id, semester_id)
        with self.conn:
            self.conn.execute("DELETE FROM semesters WHERE id=? AND user_id=?", (semester_id, user_id))
        logger.info(f"Deleted semester {semester_id} for user {user_id}")

    # Subjects

    def _insert_subject(self, user_id: str, semester_id: int, subject: Subject, metrics: SubjectMetrics) -> int:
        try:
            cur = self.conn.execute(
                """INSERT INTO subjects(user_id, semester_id, code, name, internal_marks, external_marks,
                                        credits, total, grade_point, weighted_points, updated_at)
                   VALUES(?,?,?,?,?,?,?,?,?,?,?)""",
                (
                    user_id,
                    semester_id,
                    subject.identifier,
                    subject.display_name,
                    subject.internal_marks,
                    subject.external_marks,
                    subject.credits,
                    metrics.total,
                    metrics.grade_point,
                    metrics.weighted_points,
                    self._now(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise StorageError(f"Subject code {subject.identifier} already exists in this semester") from exc
        return int(cur.lastrowid)

    def create_subject(self, user_id: str, semester_id: int, subject: Subject, config: GradingConfig) -> int:
        self._require_semester(user_id, semester_id)
        metrics = compute_metrics(subject, config)
        with self.conn:
            subject_id = self._insert_subject(user_id, semester_id, subject, metrics)
        logger.info(f"Created subject {subject.identifier} in semester {semester_id}")
        return subject_id

    def create_subjects_bulk(
        self,
        user_id: str,
        semester_id: int,
        subjects: Sequence[Subject],
        config: GradingConfig,
    ) -> List[int]:
        self._require_semester(user_id, semester_id)
        computed = [(subject, compute_metrics(subject, config)) for subject in subjects]
        with self.conn:
            ids = [self._insert_subject(user_id, semester_id, s, m) for s, m in computed]
        logger.info(f"Created {len(ids)} subjects in semester {semester_id}")
        return ids

    def _require_subject(self, user_id: str, subject_id: int) -> sqlite3.Row:
        cur = self.conn.execute("SELECT * FROM subjects WHERE id=? AND user_id=?", (subject_id, user_id))
        row = cur.fetchone()
        if row is None:
            raise NotFoundError(f"Subject {subject_id} not found")
        return row

    def get_subject(self, user_id: str, subject_id: int) -> Dict:
        return dict(self._require_subject(user_id, subject_id))

    def _write_subject(self, subject_id: int, subject: Subject, metrics: SubjectMetrics) -> None:
        try:
            self.conn.execute(
                """UPDATE subjects
                   SET code=?, name=?, internal_marks=?, external_marks=?, credits=?,
                       total=?, grade_point=?, weighted_points=?, updated_at=?
                   WHERE id=?""",
                (
                    subject.identifier,
                    subject.display_name,
                    subject.internal_marks,
                    subject.external_marks,
                    subject.credits,
                    metrics.total,
                    metrics.grade_point,
                    metrics.weighted_points,
                    self._now(),
                    subject_id,
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise StorageError(f"Subject code {subject.identifier} already exists in this semester") from exc

    def update_subject(self, user_id: str, subject_id: int, subject: Subject, config: GradingConfig) -> Dict:
        self._require_subject(user_id, subject_id)
        metrics = compute_metrics(subject, config)
        with self.conn:
            self._write_subject(subject_id, subject, metrics)
        return self.get_subject(user_id, subject_id)

    def update_external_marks(
        self,
        user_id: str,
        subject_id: int,
        external_marks: float,
        config: GradingConfig,
    ) -> Dict:
        row = self._require_subject(user_id, subject_id)
        subject = self._row_to_subject(row).with_external_marks(external_marks)
        metrics = compute_metrics(subject, config)
        with self.conn:
            self._write_subject(subject_id, subject, metrics)
        return self.get_subject(user_id, subject_id)

    def delete_subject(self, user_id: str, subject_id: int) -> None:
        self._require_subject(user_id, subject_id)
        with self.conn:
            self.conn.execute("DELETE FROM subjects WHERE id=? AND user_id=?", (subject_id, user_id))

    def list_subjects(self, user_id: str, semester_id: int) -> List[Dict]:
        cur = self.conn.execute(
            "SELECT * FROM subjects WHERE user_id=? AND semester_id=? ORDER BY id",
            (user_id, semester_id),
        )
        return [dict(row) for row in cur.fetchall()]

    def load_subjects(self, user_id: str, semester_id: int) -> List[Subject]:
        return [self._row_to_subject(row) for row in self.list_subjects(user_id, semester_id)]

    def load_semesters(self, user_id: str) -> List[Semester]:
        return [
            Semester(
                identifier=str(sem["id"]),
                name=sem["name"],
                subjects=tuple(self.load_subjects(user_id, sem["id"])),
            )
            for sem in self.list_semesters(user_id)
        ]

    def recalculate(self, user_id: str, config: GradingConfig, semester_id: Optional[int] = None) -> int:
        if semester_id is None:
            cur = self.conn.execute("SELECT * FROM subjects WHERE user_id=?", (user_id,))
        else:
            self._require_semester(user_id, semester_id)
            cur = self.conn.execute(
                "SELECT * FROM subjects WHERE user_id=? AND semester_id=?",
                (user_id, semester_id),
            )
        rows = cur.fetchall()
        computed = [(row["id"], compute_metrics(self._row_to_subject(row), config)) for row in rows]

        with self.conn:
            for subject_id, metrics in computed:
                self.conn.execute(
                    "UPDATE subjects SET total=?, grade_point=?, weighted_points=?, updated_at=? WHERE id=?",
                    (metrics.total, metrics.grade_point, metrics.weighted_points, self._now(), subject_id),
                )
        logger.info(f"Recalculated {len(computed)} subjects for user {user_id}")
        return len(computed)
