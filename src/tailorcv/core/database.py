"""Model catalog and routing store (SQLite).

Admin writes run inside a single transaction (``with conn:``) so a resolver
reading concurrently from another connection only ever sees fully committed
assignments.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from tailorcv.core.models import (
    LlmModel,
    LLMProvider,
    ModelStatus,
    ReasoningEffort,
    ResponseFormat,
    Role,
    RouteSource,
    RoutingAssignment,
    RoutingAssignmentInput,
    RuntimeModel,
    Scenario,
    ScenarioKey,
    StrategyKey,
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS llm_models (
    id                              TEXT PRIMARY KEY,
    provider                        TEXT NOT NULL,
    model_key                       TEXT NOT NULL,
    display_name                    TEXT NOT NULL,
    status                          TEXT NOT NULL DEFAULT 'active',
    input_price_per_1m_usd          REAL NOT NULL DEFAULT 0,
    output_price_per_1m_usd         REAL NOT NULL DEFAULT 0,
    cached_input_price_per_1m_usd   REAL,
    max_context_tokens              INTEGER,
    max_output_tokens               INTEGER,
    supports_json                   INTEGER NOT NULL DEFAULT 0,
    supports_tools                  INTEGER NOT NULL DEFAULT 0,
    supports_streaming              INTEGER NOT NULL DEFAULT 0,
    notes                           TEXT,
    created_at                      TEXT NOT NULL,
    updated_at                      TEXT NOT NULL,
    UNIQUE (provider, model_key)
);

CREATE TABLE IF NOT EXISTS llm_scenarios (
    key          TEXT PRIMARY KEY,
    label        TEXT NOT NULL,
    description  TEXT,
    enabled      INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS llm_scenario_models (
    scenario_key      TEXT PRIMARY KEY,
    model_id          TEXT NOT NULL,
    retry_model_id    TEXT,
    temperature       REAL,
    max_tokens        INTEGER,
    response_format   TEXT,
    reasoning_effort  TEXT,
    strategy_key      TEXT,
    updated_at        TEXT NOT NULL,
    FOREIGN KEY (scenario_key) REFERENCES llm_scenarios(key),
    FOREIGN KEY (model_id) REFERENCES llm_models(id),
    FOREIGN KEY (retry_model_id) REFERENCES llm_models(id)
);

CREATE TABLE IF NOT EXISTS llm_role_scenario_overrides (
    scenario_key      TEXT NOT NULL,
    role              TEXT NOT NULL,
    model_id          TEXT NOT NULL,
    retry_model_id    TEXT,
    temperature       REAL,
    max_tokens        INTEGER,
    response_format   TEXT,
    reasoning_effort  TEXT,
    strategy_key      TEXT,
    updated_at        TEXT NOT NULL,
    PRIMARY KEY (scenario_key, role),
    FOREIGN KEY (scenario_key) REFERENCES llm_scenarios(key),
    FOREIGN KEY (model_id) REFERENCES llm_models(id),
    FOREIGN KEY (retry_model_id) REFERENCES llm_models(id)
);

CREATE TABLE IF NOT EXISTS llm_role_scenario_enabled_overrides (
    scenario_key  TEXT NOT NULL,
    role          TEXT NOT NULL,
    enabled       INTEGER NOT NULL,
    updated_at    TEXT NOT NULL,
    PRIMARY KEY (scenario_key, role),
    FOREIGN KEY (scenario_key) REFERENCES llm_scenarios(key)
);
"""

# key -> (label, description, enabled)
_SCENARIO_BOOTSTRAP: dict[ScenarioKey, tuple[str, str, bool]] = {
    ScenarioKey.RESUME_PARSE: (
        "Resume Parse",
        "Extract structured resume content from an uploaded document.",
        True,
    ),
    ScenarioKey.RESUME_ADAPTATION: (
        "Resume Adaptation",
        "Tailor the base resume to a vacancy.",
        True,
    ),
    ScenarioKey.RESUME_ADAPTATION_SCORING: (
        "Resume Adaptation Scoring",
        "Estimate before/after match scores for an adapted resume.",
        True,
    ),
    ScenarioKey.RESUME_ADAPTATION_SCORING_DETAIL: (
        "Resume Adaptation Scoring Detail",
        "Extract vacancy signals and map resume evidence for detailed scoring.",
        True,
    ),
    ScenarioKey.COVER_LETTER_GENERATION: (
        "Cover Letter Generation",
        "Generate and rewrite cover letters.",
        True,
    ),
    ScenarioKey.COVER_LETTER_GENERATION_DRAFT: (
        "Cover Letter Generation Draft",
        "Generate a fast draft cover letter structure for manual refinement.",
        True,
    ),
    ScenarioKey.COVER_LETTER_HUMANIZER_CRITIC: (
        "Cover Letter Humanizer Critic",
        "Evaluate and optionally rewrite cover letter output for naturalness.",
        False,
    ),
}


class ModelInUseError(Exception):
    """Raised when deleting a model that routing assignments still reference."""

    def __init__(self, model_id: str, references: int):
        self.model_id = model_id
        self.references = references
        super().__init__(
            f"Model {model_id} is referenced by {references} routing assignment(s). "
            "Deactivate it instead."
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _datetime_to_str(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def _str_to_datetime(s: str | None) -> datetime | None:
    return datetime.fromisoformat(s) if s else None


def _enum_value(value: Any | None) -> str | None:
    return value.value if value is not None else None


# ---------------------------------------------------------------------------
# Init
# ---------------------------------------------------------------------------


def init_db(path: Path) -> sqlite3.Connection:
    """Create / open the catalog database, ensure tables and bootstrap scenarios."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.executescript(_SCHEMA)
    for key, (label, description, enabled) in _SCENARIO_BOOTSTRAP.items():
        conn.execute(
            "INSERT OR IGNORE INTO llm_scenarios (key, label, description, enabled) VALUES (?, ?, ?, ?)",
            (key.value, label, description, int(enabled)),
        )
    conn.commit()
    return conn


def get_default_db_path() -> Path:
    """Return ``data/tailorcv.db`` relative to the project root."""
    from tailorcv.core.paths import get_data_dir

    return get_data_dir() / "tailorcv.db"


# ---------------------------------------------------------------------------
# Model CRUD
# ---------------------------------------------------------------------------


def save_model(conn: sqlite3.Connection, model: LlmModel) -> None:
    conn.execute(
        """
        INSERT INTO llm_models
            (id, provider, model_key, display_name, status,
             input_price_per_1m_usd, output_price_per_1m_usd, cached_input_price_per_1m_usd,
             max_context_tokens, max_output_tokens,
             supports_json, supports_tools, supports_streaming,
             notes, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            provider = excluded.provider,
            model_key = excluded.model_key,
            display_name = excluded.display_name,
            status = excluded.status,
            input_price_per_1m_usd = excluded.input_price_per_1m_usd,
            output_price_per_1m_usd = excluded.output_price_per_1m_usd,
            cached_input_price_per_1m_usd = excluded.cached_input_price_per_1m_usd,
            max_context_tokens = excluded.max_context_tokens,
            max_output_tokens = excluded.max_output_tokens,
            supports_json = excluded.supports_json,
            supports_tools = excluded.supports_tools,
            supports_streaming = excluded.supports_streaming,
            notes = excluded.notes,
            updated_at = excluded.updated_at
        """,
        (
            model.id,
            model.provider.value,
            model.model_key,
            model.display_name,
            model.status.value,
            model.input_price_per_1m_usd,
            model.output_price_per_1m_usd,
            model.cached_input_price_per_1m_usd,
            model.max_context_tokens,
            model.max_output_tokens,
            int(model.supports_json),
            int(model.supports_tools),
            int(model.supports_streaming),
            model.notes,
            _datetime_to_str(model.created_at),
            _datetime_to_str(model.updated_at),
        ),
    )
    conn.commit()


def _row_to_model(row: sqlite3.Row) -> LlmModel:
    return LlmModel(
        id=row["id"],
        provider=LLMProvider(row["provider"]),
        model_key=row["model_key"],
        display_name=row["display_name"],
        status=ModelStatus(row["status"]),
        input_price_per_1m_usd=row["input_price_per_1m_usd"],
        output_price_per_1m_usd=row["output_price_per_1m_usd"],
        cached_input_price_per_1m_usd=row["cached_input_price_per_1m_usd"],
        max_context_tokens=row["max_context_tokens"],
        max_output_tokens=row["max_output_tokens"],
        supports_json=bool(row["supports_json"]),
        supports_tools=bool(row["supports_tools"]),
        supports_streaming=bool(row["supports_streaming"]),
        notes=row["notes"],
        created_at=_str_to_datetime(row["created_at"]),  # type: ignore[arg-type]
        updated_at=_str_to_datetime(row["updated_at"]),  # type: ignore[arg-type]
    )


def get_model(conn: sqlite3.Connection, id: str) -> LlmModel | None:
    cur = conn.execute("SELECT * FROM llm_models WHERE id = ?", (id,))
    row = cur.fetchone()
    return _row_to_model(row) if row else None


def list_models(conn: sqlite3.Connection, status: ModelStatus | None = None) -> list[LlmModel]:
    query = "SELECT * FROM llm_models"
    params: list[Any] = []
    if status is not None:
        query += " WHERE status = ?"
        params.append(status.value)
    query += " ORDER BY provider, model_key"
    cur = conn.execute(query, params)
    return [_row_to_model(row) for row in cur.fetchall()]


def set_model_status(conn: sqlite3.Connection, id: str, status: ModelStatus) -> LlmModel | None:
    """Soft-toggle a model. Returns the updated model, or None if unknown."""
    with conn:
        cur = conn.execute(
            "UPDATE llm_models SET status = ?, updated_at = ? WHERE id = ?",
            (status.value, _datetime_to_str(datetime.now()), id),
        )
    if cur.rowcount == 0:
        return None
    return get_model(conn, id)


def count_model_references(conn: sqlite3.Connection, id: str) -> int:
    total = 0
    for table in ("llm_scenario_models", "llm_role_scenario_overrides"):
        cur = conn.execute(
            f"SELECT COUNT(*) FROM {table} WHERE model_id = ? OR retry_model_id = ?",
            (id, id),
        )
        total += cur.fetchone()[0]
    return total


def delete_model(conn: sqlite3.Connection, id: str) -> bool:
    """Hard-delete an unreferenced model. Raises ``ModelInUseError`` otherwise."""
    references = count_model_references(conn, id)
    if references:
        raise ModelInUseError(id, references)
    with conn:
        cur = conn.execute("DELETE FROM llm_models WHERE id = ?", (id,))
    return cur.rowcount > 0


def is_model_active(conn: sqlite3.Connection, id: str | None) -> bool:
    if not id:
        return False
    cur = conn.execute("SELECT status FROM llm_models WHERE id = ?", (id,))
    row = cur.fetchone()
    return row is not None and row["status"] == ModelStatus.ACTIVE.value


def find_active_model(conn: sqlite3.Connection, id: str | None) -> LlmModel | None:
    if not id:
        return None
    model = get_model(conn, id)
    if model is None or model.status != ModelStatus.ACTIVE:
        return None
    return model


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def _row_to_scenario(row: sqlite3.Row) -> Scenario:
    return Scenario(
        key=ScenarioKey(row["key"]),
        label=row["label"],
        description=row["description"],
        enabled=bool(row["enabled"]),
    )


def find_scenario(conn: sqlite3.Connection, key: ScenarioKey) -> Scenario | None:
    cur = conn.execute("SELECT * FROM llm_scenarios WHERE key = ?", (key.value,))
    row = cur.fetchone()
    return _row_to_scenario(row) if row else None


def list_scenarios(conn: sqlite3.Connection) -> list[Scenario]:
    cur = conn.execute("SELECT * FROM llm_scenarios ORDER BY key")
    return [_row_to_scenario(row) for row in cur.fetchall()]


def set_scenario_enabled(conn: sqlite3.Connection, key: ScenarioKey, enabled: bool) -> bool:
    with conn:
        cur = conn.execute(
            "UPDATE llm_scenarios SET enabled = ? WHERE key = ?",
            (int(enabled), key.value),
        )
    return cur.rowcount > 0


def upsert_role_enabled_override(
    conn: sqlite3.Connection, key: ScenarioKey, role: Role, enabled: bool
) -> None:
    with conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO llm_role_scenario_enabled_overrides
                (scenario_key, role, enabled, updated_at)
            VALUES (?, ?, ?, ?)
            """,
            (key.value, role.value, int(enabled), _datetime_to_str(datetime.now())),
        )


def delete_role_enabled_override(conn: sqlite3.Connection, key: ScenarioKey, role: Role) -> bool:
    with conn:
        cur = conn.execute(
            "DELETE FROM llm_role_scenario_enabled_overrides WHERE scenario_key = ? AND role = ?",
            (key.value, role.value),
        )
    return cur.rowcount > 0


def is_scenario_enabled_for_role(conn: sqlite3.Connection, key: ScenarioKey, role: Role) -> bool:
    """A per-role enabled override wins over the scenario's own flag."""
    cur = conn.execute(
        "SELECT enabled FROM llm_role_scenario_enabled_overrides WHERE scenario_key = ? AND role = ?",
        (key.value, role.value),
    )
    row = cur.fetchone()
    if row is not None:
        return bool(row["enabled"])
    scenario = find_scenario(conn, key)
    return scenario is not None and scenario.enabled


# ---------------------------------------------------------------------------
# Routing assignments
# ---------------------------------------------------------------------------


def _row_to_assignment(row: sqlite3.Row, role: Role | None = None) -> RoutingAssignment:
    return RoutingAssignment(
        scenario_key=ScenarioKey(row["scenario_key"]),
        role=role,
        model_id=row["model_id"],
        retry_model_id=row["retry_model_id"],
        temperature=row["temperature"],
        max_tokens=row["max_tokens"],
        response_format=ResponseFormat(row["response_format"]) if row["response_format"] else None,
        reasoning_effort=ReasoningEffort(row["reasoning_effort"]) if row["reasoning_effort"] else None,
        strategy_key=StrategyKey(row["strategy_key"]) if row["strategy_key"] else None,
        updated_at=_str_to_datetime(row["updated_at"]),  # type: ignore[arg-type]
    )


def _assignment_params(assignment: RoutingAssignmentInput, updated_at: datetime) -> tuple[Any, ...]:
    return (
        assignment.model_id,
        assignment.retry_model_id,
        assignment.temperature,
        assignment.max_tokens,
        _enum_value(assignment.response_format),
        _enum_value(assignment.reasoning_effort),
        _enum_value(assignment.strategy_key),
        _datetime_to_str(updated_at),
    )


def upsert_scenario_default(
    conn: sqlite3.Connection, key: ScenarioKey, assignment: RoutingAssignmentInput
) -> RoutingAssignment:
    now = datetime.now()
    with conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO llm_scenario_models
                (scenario_key, model_id, retry_model_id, temperature, max_tokens,
                 response_format, reasoning_effort, strategy_key, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (key.value, *_assignment_params(assignment, now)),
        )
    return RoutingAssignment(scenario_key=key, updated_at=now, **assignment.model_dump())


def get_scenario_default(conn: sqlite3.Connection, key: ScenarioKey) -> RoutingAssignment | None:
    cur = conn.execute("SELECT * FROM llm_scenario_models WHERE scenario_key = ?", (key.value,))
    row = cur.fetchone()
    return _row_to_assignment(row) if row else None


def upsert_role_override(
    conn: sqlite3.Connection, key: ScenarioKey, role: Role, assignment: RoutingAssignmentInput
) -> RoutingAssignment:
    now = datetime.now()
    with conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO llm_role_scenario_overrides
                (scenario_key, role, model_id, retry_model_id, temperature, max_tokens,
                 response_format, reasoning_effort, strategy_key, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (key.value, role.value, *_assignment_params(assignment, now)),
        )
    return RoutingAssignment(scenario_key=key, role=role, updated_at=now, **assignment.model_dump())


def get_role_override(
    conn: sqlite3.Connection, key: ScenarioKey, role: Role
) -> RoutingAssignment | None:
    cur = conn.execute(
        "SELECT * FROM llm_role_scenario_overrides WHERE scenario_key = ? AND role = ?",
        (key.value, role.value),
    )
    row = cur.fetchone()
    return _row_to_assignment(row, role) if row else None


def list_role_overrides(conn: sqlite3.Connection, key: ScenarioKey) -> list[RoutingAssignment]:
    cur = conn.execute(
        "SELECT * FROM llm_role_scenario_overrides WHERE scenario_key = ? ORDER BY role",
        (key.value,),
    )
    return [_row_to_assignment(row, Role(row["role"])) for row in cur.fetchall()]


def delete_role_override(conn: sqlite3.Connection, key: ScenarioKey, role: Role) -> bool:
    with conn:
        cur = conn.execute(
            "DELETE FROM llm_role_scenario_overrides WHERE scenario_key = ? AND role = ?",
            (key.value, role.value),
        )
    return cur.rowcount > 0


def resolve_runtime_model(
    conn: sqlite3.Connection, role: Role, key: ScenarioKey
) -> RuntimeModel | None:
    """Return the first routing tier whose primary model is active.

    Tiers are tried in order: role override, then scenario default. An
    inactive or missing retry model is dropped without invalidating the tier.
    A disabled scenario (globally or for *role*) resolves to None.
    """
    if not is_scenario_enabled_for_role(conn, key, role):
        return None

    tiers = (
        (RouteSource.ROLE_OVERRIDE, get_role_override(conn, key, role)),
        (RouteSource.SCENARIO_DEFAULT, get_scenario_default(conn, key)),
    )
    for source, assignment in tiers:
        if assignment is None:
            continue
        model = find_active_model(conn, assignment.model_id)
        if model is None:
            continue
        return RuntimeModel(
            source=source,
            assignment=assignment,
            model=model,
            retry_model=find_active_model(conn, assignment.retry_model_id),
        )
    return None
