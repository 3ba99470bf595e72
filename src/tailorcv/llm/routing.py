"""Scenario routing: which model, strategy and settings serve a (role, scenario).

Resolution precedence is role override, then scenario default, then nothing.
An unresolved route is ``None``; callers pick their own fallback model.

Assignment writes go through ``normalize_assignment_input`` so fields a
scenario cannot use (retry model, strategy) are dropped before storage.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from tailorcv.core.database import (
    find_scenario,
    is_model_active,
    resolve_runtime_model,
    upsert_role_override,
    upsert_scenario_default,
)
from tailorcv.core.models import (
    ModelSpec,
    ResolvedRoute,
    Role,
    RoutingAssignment,
    RoutingAssignmentInput,
    ScenarioKey,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScenarioRoutingCapabilities:
    supports_retry_model: bool = False
    supports_strategy: bool = False


SCENARIO_ROUTING_CAPABILITIES: dict[ScenarioKey, ScenarioRoutingCapabilities] = {
    ScenarioKey.RESUME_PARSE: ScenarioRoutingCapabilities(supports_retry_model=True),
    ScenarioKey.RESUME_ADAPTATION: ScenarioRoutingCapabilities(
        supports_retry_model=True, supports_strategy=True
    ),
    ScenarioKey.RESUME_ADAPTATION_SCORING: ScenarioRoutingCapabilities(),
    ScenarioKey.RESUME_ADAPTATION_SCORING_DETAIL: ScenarioRoutingCapabilities(supports_retry_model=True),
    ScenarioKey.COVER_LETTER_GENERATION: ScenarioRoutingCapabilities(),
    ScenarioKey.COVER_LETTER_GENERATION_DRAFT: ScenarioRoutingCapabilities(),
    ScenarioKey.COVER_LETTER_HUMANIZER_CRITIC: ScenarioRoutingCapabilities(),
}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class RoutingError(Exception):
    """Base class for rejected routing writes."""


class ScenarioNotFoundError(RoutingError):
    def __init__(self, scenario: ScenarioKey):
        self.scenario = scenario
        super().__init__(f"Scenario not found: {scenario.value}")


class InactiveModelError(RoutingError):
    def __init__(self, model_id: str, field: str = "model_id"):
        self.model_id = model_id
        self.field = field
        super().__init__(f"{field} {model_id} does not reference an active model")


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve_scenario_model(
    conn: sqlite3.Connection, role: Role, scenario: ScenarioKey
) -> ResolvedRoute | None:
    """Resolve the route for *role* and *scenario*, or None when nothing is usable."""
    runtime = resolve_runtime_model(conn, role, scenario)
    if runtime is None:
        logger.debug("No route for scenario=%s role=%s", scenario.value, role.value)
        return None

    assignment = runtime.assignment
    route = ResolvedRoute(
        source=runtime.source,
        primary=ModelSpec.from_catalog(runtime.model),
        retry=ModelSpec.from_catalog(runtime.retry_model) if runtime.retry_model else None,
        strategy_key=assignment.strategy_key,
        temperature=assignment.temperature,
        max_tokens=assignment.max_tokens,
        response_format=assignment.response_format,
        reasoning_effort=assignment.reasoning_effort,
    )
    logger.debug(
        "Route for scenario=%s role=%s: source=%s model=%s retry=%s",
        scenario.value,
        role.value,
        route.source.value,
        route.primary.model_key,
        route.retry.model_key if route.retry else None,
    )
    return route


# ---------------------------------------------------------------------------
# Assignment writes
# ---------------------------------------------------------------------------


def normalize_assignment_input(
    scenario: ScenarioKey, assignment: RoutingAssignmentInput
) -> RoutingAssignmentInput:
    """Null out the fields *scenario* does not support."""
    capabilities = SCENARIO_ROUTING_CAPABILITIES.get(scenario, ScenarioRoutingCapabilities())
    updates: dict[str, None] = {}
    if not capabilities.supports_retry_model:
        updates["retry_model_id"] = None
    if not capabilities.supports_strategy:
        updates["strategy_key"] = None
    return assignment.model_copy(update=updates)


def _validate_assignment(
    conn: sqlite3.Connection, scenario: ScenarioKey, assignment: RoutingAssignmentInput
) -> RoutingAssignmentInput:
    if find_scenario(conn, scenario) is None:
        raise ScenarioNotFoundError(scenario)
    normalized = normalize_assignment_input(scenario, assignment)
    if not is_model_active(conn, normalized.model_id):
        raise InactiveModelError(normalized.model_id)
    if normalized.retry_model_id and not is_model_active(conn, normalized.retry_model_id):
        raise InactiveModelError(normalized.retry_model_id, "retry_model_id")
    return normalized


def set_scenario_default(
    conn: sqlite3.Connection, scenario: ScenarioKey, assignment: RoutingAssignmentInput
) -> RoutingAssignment:
    normalized = _validate_assignment(conn, scenario, assignment)
    logger.debug("Setting default for scenario=%s model=%s", scenario.value, normalized.model_id)
    return upsert_scenario_default(conn, scenario, normalized)


def set_role_override(
    conn: sqlite3.Connection,
    scenario: ScenarioKey,
    role: Role,
    assignment: RoutingAssignmentInput,
) -> RoutingAssignment:
    normalized = _validate_assignment(conn, scenario, assignment)
    logger.debug(
        "Setting override for scenario=%s role=%s model=%s",
        scenario.value,
        role.value,
        normalized.model_id,
    )
    return upsert_role_override(conn, scenario, role, normalized)
