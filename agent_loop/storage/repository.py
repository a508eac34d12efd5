# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Loop repository for persistent storage of agent loop records.

Personas, simulations, feedback reports, configuration versions, iteration
records and loop summaries are each stored as an independently addressable
row keyed by the record's generated id. Records are written once; nothing
here updates a row in place.
"""

import json
import sqlite3
import logging

from pathlib import Path
from typing import Optional, List
from contextlib import contextmanager

from ..types.errors import PersistenceError
from ..types.loop_types import (
    ConfigVersion,
    FeedbackReport,
    IterationRecord,
    LoopSummary,
    Persona,
    ProgressiveIterationRecord,
    ProgressiveSummary,
    SimulationResult,
)

logger = logging.getLogger(__name__)


class LoopRepository:
    """
    Repository for agent loop records.

    Every write happens in its own transaction; any sqlite failure surfaces
    as a PersistenceError.
    """

    def __init__(self, db_path: Path):
        """
        Initialize repository with database path.

        Args:
            db_path: Path to SQLite database file (will be created if doesn't exist)
        """
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create database directory {self.db_path.parent}: {e}") from e
        self._ensure_schema()

    @contextmanager
    def _get_connection(self):
        """Context manager for database connections with transaction support."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_schema(self):
        """
        Create database schema if it doesn't exist.

        Tables:
        - personas: Generated test subjects
        - simulations: Simulated interview transcripts
        - feedback: Persona feedback reports
        - config_versions: Append-only configuration history
        - iteration_records: One row per completed iteration
        - loop_summaries: Final summary of each run
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS personas (
                    persona_id TEXT PRIMARY KEY,
                    iteration INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    criticality REAL,
                    payload TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS simulations (
                    simulation_id TEXT PRIMARY KEY,
                    persona_id TEXT NOT NULL,
                    iteration INTEGER NOT NULL,
                    completed_successfully INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS feedback (
                    feedback_id TEXT PRIMARY KEY,
                    simulation_id TEXT NOT NULL,
                    persona_id TEXT NOT NULL,
                    iteration INTEGER NOT NULL,
                    overall_satisfaction REAL NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS config_versions (
                    config_id TEXT PRIMARY KEY,
                    module TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    changelog TEXT NOT NULL DEFAULT '',
                    metrics_snapshot TEXT NOT NULL DEFAULT '{}',
                    iteration INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP NOT NULL,

                    UNIQUE (module, version),
                    CHECK (version >= 1)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS iteration_records (
                    record_id TEXT PRIMARY KEY,
                    run_id TEXT NOT NULL,
                    iteration INTEGER NOT NULL,
                    variant TEXT NOT NULL DEFAULT 'standard',
                    convergence_score REAL NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,

                    CHECK (variant IN ('standard', 'progressive'))
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS loop_summaries (
                    summary_id TEXT PRIMARY KEY,
                    run_id TEXT NOT NULL,
                    variant TEXT NOT NULL,
                    converged INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    completed_at TIMESTAMP NOT NULL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_config_versions_module
                ON config_versions(module, version DESC)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_iteration_records_run
                ON iteration_records(run_id, iteration)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_personas_iteration
                ON personas(iteration)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_feedback_iteration
                ON feedback(iteration)
            """)

    def _row_to_config_version(self, row: sqlite3.Row) -> ConfigVersion:
        """Convert database row to ConfigVersion."""
        return ConfigVersion(
            id=row['config_id'],
            module=row['module'],
            version=row['version'],
            payload=row['payload'],
            changelog=row['changelog'],
            metrics_snapshot=json.loads(row['metrics_snapshot'] or '{}'),
            iteration=row['iteration'],
            created_at=row['created_at'],
        )

    # Personas
    def save_persona(self, persona: Persona) -> str:
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO personas (persona_id, iteration, name, criticality, payload, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                persona.id,
                persona.iteration,
                persona.name,
                persona.criticality,
                persona.model_dump_json(),
                persona.created_at.isoformat(),
            ))
        return persona.id

    def get_persona(self, persona_id: str) -> Optional[Persona]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT payload FROM personas WHERE persona_id = ?", (persona_id,)
            ).fetchone()
            return Persona.model_validate_json(row['payload']) if row else None

    def list_personas(self, iteration: Optional[int] = None, limit: Optional[int] = None) -> List[Persona]:
        """
        List personas, oldest first.

        Args:
            iteration: Only personas generated for this iteration
            limit: Only the most recent `limit` personas
        """
        query = "SELECT payload FROM personas"
        params: list = []
        if iteration is not None:
            query += " WHERE iteration = ?"
            params.append(iteration)
        query += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [Persona.model_validate_json(row['payload']) for row in reversed(rows)]

    # Simulations
    def save_simulation(self, simulation: SimulationResult) -> str:
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO simulations (simulation_id, persona_id, iteration, completed_successfully, payload, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                simulation.id,
                simulation.persona_id,
                simulation.iteration,
                int(simulation.completed_successfully),
                simulation.model_dump_json(),
                simulation.created_at.isoformat(),
            ))
        return simulation.id

    def get_simulation(self, simulation_id: str) -> Optional[SimulationResult]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT payload FROM simulations WHERE simulation_id = ?", (simulation_id,)
            ).fetchone()
            return SimulationResult.model_validate_json(row['payload']) if row else None

    def list_simulations(self, iteration: Optional[int] = None) -> List[SimulationResult]:
        with self._get_connection() as conn:
            if iteration is None:
                rows = conn.execute(
                    "SELECT payload FROM simulations ORDER BY created_at, rowid"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT payload FROM simulations WHERE iteration = ? ORDER BY created_at, rowid",
                    (iteration,),
                ).fetchall()
        return [SimulationResult.model_validate_json(row['payload']) for row in rows]

    # Feedback
    def save_feedback(self, report: FeedbackReport) -> str:
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO feedback (feedback_id, simulation_id, persona_id, iteration, overall_satisfaction, payload, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                report.id,
                report.simulation_id,
                report.persona_id,
                report.iteration,
                report.overall_satisfaction,
                report.model_dump_json(),
                report.created_at.isoformat(),
            ))
        return report.id

    def get_feedback(self, feedback_id: str) -> Optional[FeedbackReport]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT payload FROM feedback WHERE feedback_id = ?", (feedback_id,)
            ).fetchone()
            return FeedbackReport.model_validate_json(row['payload']) if row else None

    def list_feedback(self, iteration: Optional[int] = None) -> List[FeedbackReport]:
        with self._get_connection() as conn:
            if iteration is None:
                rows = conn.execute(
                    "SELECT payload FROM feedback ORDER BY created_at, rowid"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT payload FROM feedback WHERE iteration = ? ORDER BY created_at, rowid",
                    (iteration,),
                ).fetchall()
        return [FeedbackReport.model_validate_json(row['payload']) for row in rows]

    # Configuration versions
    def append_config_version(
        self,
        module: str,
        payload: str,
        changelog: str = "",
        metrics_snapshot: Optional[dict] = None,
        iteration: int = 0,
    ) -> ConfigVersion:
        """
        Append the next version of a module's configuration.

        The next version number is read and written inside one IMMEDIATE
        transaction, so concurrent writers cannot produce duplicates or gaps.

        Returns:
            The stored ConfigVersion
        """
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT COALESCE(MAX(version), 0) AS latest FROM config_versions WHERE module = ?",
                (module,),
            ).fetchone()
            version = ConfigVersion(
                module=module,
                version=row['latest'] + 1,
                payload=payload,
                changelog=changelog,
                metrics_snapshot=metrics_snapshot or {},
                iteration=iteration,
            )
            conn.execute("""
                INSERT INTO config_versions (config_id, module, version, payload, changelog, metrics_snapshot, iteration, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                version.id,
                version.module,
                version.version,
                version.payload,
                version.changelog,
                json.dumps(version.metrics_snapshot),
                version.iteration,
                version.created_at.isoformat(),
            ))
        return version

    def get_config_version(self, module: str, version: int) -> Optional[ConfigVersion]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM config_versions WHERE module = ? AND version = ?",
                (module, version),
            ).fetchone()
            return self._row_to_config_version(row) if row else None

    def latest_config_version(self, module: str) -> Optional[ConfigVersion]:
        with self._get_connection() as conn:
            row = conn.execute("""
                SELECT * FROM config_versions
                WHERE module = ?
                ORDER BY version DESC
                LIMIT 1
            """, (module,)).fetchone()
            return self._row_to_config_version(row) if row else None

    def list_config_versions(self, module: str) -> List[ConfigVersion]:
        """All versions of a module, oldest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM config_versions WHERE module = ? ORDER BY version ASC",
                (module,),
            ).fetchall()
            return [self._row_to_config_version(row) for row in rows]

    def list_config_modules(self) -> List[str]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT DISTINCT module FROM config_versions ORDER BY module"
            ).fetchall()
            return [row['module'] for row in rows]

    # Iteration records
    def save_iteration_record(self, record: IterationRecord) -> str:
        variant = "progressive" if isinstance(record, ProgressiveIterationRecord) else "standard"
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO iteration_records (record_id, run_id, iteration, variant, convergence_score, payload, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                record.id,
                record.run_id,
                record.iteration,
                variant,
                record.convergence_score,
                record.model_dump_json(),
                record.created_at.isoformat(),
            ))
        return record.id

    def list_iteration_records(self, run_id: Optional[str] = None) -> List[IterationRecord]:
        """
        Iteration records in iteration order.

        Args:
            run_id: Only records of this run (all runs when omitted)
        """
        with self._get_connection() as conn:
            if run_id is None:
                rows = conn.execute(
                    "SELECT variant, payload FROM iteration_records ORDER BY created_at, iteration"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT variant, payload FROM iteration_records WHERE run_id = ? ORDER BY iteration",
                    (run_id,),
                ).fetchall()
        return [
            ProgressiveIterationRecord.model_validate_json(row['payload'])
            if row['variant'] == "progressive"
            else IterationRecord.model_validate_json(row['payload'])
            for row in rows
        ]

    # Loop summaries
    def save_summary(self, summary: LoopSummary) -> str:
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO loop_summaries (summary_id, run_id, variant, converged, payload, completed_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                summary.id,
                summary.run_id,
                summary.variant,
                int(summary.converged),
                summary.model_dump_json(),
                summary.completed_at.isoformat(),
            ))
        return summary.id

    def get_summary(self, run_id: str) -> Optional[LoopSummary]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT variant, payload FROM loop_summaries WHERE run_id = ?", (run_id,)
            ).fetchone()
        if row is None:
            return None
        model = ProgressiveSummary if row['variant'] == "progressive" else LoopSummary
        return model.model_validate_json(row['payload'])

    def list_summaries(self, limit: int = 20) -> List[LoopSummary]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT variant, payload FROM loop_summaries ORDER BY completed_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            (ProgressiveSummary if row['variant'] == "progressive" else LoopSummary).model_validate_json(row['payload'])
            for row in rows
        ]
