"""
SQL for the persistence collaborator of the lead-scoring subsystem.

Only lifecycle state is persisted: model version metadata, served
predictions paired with their observed outcomes, and A/B test state. Lead
profiles and interactions are read from the CRM's existing tables.

Payload columns hold the pydantic model serialized with model_dump_json()
and are read back with model_validate_json(), so schema changes to the
models do not require migrations. Queries use asyncpg's $n placeholders.
"""


# =============================================================================
# DDL
# =============================================================================

CREATE_TABLES: str = """
CREATE TABLE IF NOT EXISTS ml_model_versions (
    id          TEXT PRIMARY KEY,
    model_type  TEXT NOT NULL,
    status      TEXT NOT NULL,
    payload     JSONB NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL,
    updated_at  TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS ml_prediction_outcomes (
    id          BIGSERIAL PRIMARY KEY,
    model_id    TEXT NOT NULL,
    lead_id     TEXT NOT NULL,
    prediction  DOUBLE PRECISION NOT NULL,
    actual      SMALLINT NOT NULL,
    features    JSONB,
    recorded_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_ml_prediction_outcomes_recorded_at
    ON ml_prediction_outcomes (recorded_at);

CREATE TABLE IF NOT EXISTS ml_ab_tests (
    id          TEXT PRIMARY KEY,
    status      TEXT NOT NULL,
    payload     JSONB NOT NULL,
    updated_at  TIMESTAMPTZ NOT NULL
);
"""


# =============================================================================
# Model Versions
# =============================================================================

UPSERT_MODEL_VERSION: str = """
INSERT INTO ml_model_versions (id, model_type, status, payload, created_at, updated_at)
VALUES ($1, $2, $3, $4::jsonb, $5, $6)
ON CONFLICT (id) DO UPDATE SET
    status = EXCLUDED.status,
    payload = EXCLUDED.payload,
    updated_at = EXCLUDED.updated_at
"""

SELECT_MODEL_VERSION: str = """
SELECT payload::text AS payload FROM ml_model_versions WHERE id = $1
"""

SELECT_MODEL_VERSIONS: str = """
SELECT payload::text AS payload FROM ml_model_versions ORDER BY created_at
"""


# =============================================================================
# Prediction Outcomes
# =============================================================================

INSERT_OUTCOME: str = """
INSERT INTO ml_prediction_outcomes (model_id, lead_id, prediction, actual, features, recorded_at)
VALUES ($1, $2, $3, $4, $5::jsonb, $6)
"""

SELECT_OUTCOMES_SINCE: str = """
SELECT model_id, lead_id, prediction, actual, recorded_at
FROM ml_prediction_outcomes
WHERE recorded_at >= $1
  AND ($2::text IS NULL OR model_id = $2)
ORDER BY recorded_at
"""

COUNT_OUTCOMES_SINCE: str = """
SELECT COUNT(*) AS n FROM ml_prediction_outcomes WHERE recorded_at >= $1
"""

SELECT_TRAINING_ROWS_SINCE: str = """
SELECT features::text AS features, actual, recorded_at
FROM ml_prediction_outcomes
WHERE recorded_at >= $1 AND features IS NOT NULL
ORDER BY recorded_at
"""


# =============================================================================
# A/B Tests
# =============================================================================

UPSERT_AB_TEST: str = """
INSERT INTO ml_ab_tests (id, status, payload, updated_at)
VALUES ($1, $2, $3::jsonb, $4)
ON CONFLICT (id) DO UPDATE SET
    status = EXCLUDED.status,
    payload = EXCLUDED.payload,
    updated_at = EXCLUDED.updated_at
"""

SELECT_AB_TEST: str = """
SELECT payload::text AS payload FROM ml_ab_tests WHERE id = $1
"""

SELECT_AB_TESTS: str = """
SELECT payload::text AS payload FROM ml_ab_tests ORDER BY updated_at
"""


# =============================================================================
# CRM Leads (read-only)
# =============================================================================

SELECT_LEAD: str = """
SELECT lead_id::text AS lead_id, first_name, last_name, email, phone_number, status,
       source, created_at, budget_min, budget_max
FROM leads
WHERE lead_id::text = $1
"""

SELECT_LEAD_INTERACTIONS: str = """
SELECT type, interaction_date
FROM interactions
WHERE lead_id::text = $1
ORDER BY interaction_date
"""
