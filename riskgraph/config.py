"""
Application configuration.
Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration for the Behavioral Risk Graph engine."""

    # ── Application ─────────────────────────────────────────
    APP_NAME: str = "Behavioral Risk Graph & Fraud Cluster Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── Neo4j (fraud signal graph, read-only) ───────────────
    NEO4J_URI: str = "bolt://localhost:7687"
    NEO4J_USER: str = "neo4j"
    NEO4J_PASSWORD: str = "password123"
    NEO4J_DATABASE: str = "neo4j"
    NEO4J_MAX_POOL_SIZE: int = 50

    # ── Redis (risk node / cluster state) ───────────────────
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_KEY_PREFIX: str = "riskgraph"
    REDIS_SANCTIONS_STREAM: str = "sanctions"

    # ── Optimistic concurrency ──────────────────────────────
    WRITE_MAX_RETRIES: int = 5
    WRITE_BASE_BACKOFF_SEC: float = 0.01

    # ── Connection weigher ──────────────────────────────────
    STRENGTH_SATURATION_COUNT: int = 5
    MULTI_ACCOUNT_SHARE_COUNT: int = 3

    # ── Local risk scorer ───────────────────────────────────
    NEW_ACCOUNT_DAYS: int = 7
    NEW_ACCOUNT_PENALTY: float = 15.0
    REPORT_PENALTY_PER: float = 3.0
    REPORT_PENALTY_CAP: float = 15.0
    BLOCK_PENALTY_PER: float = 2.0
    BLOCK_PENALTY_CAP: float = 10.0
    CONNECTION_POINTS: float = 25.0
    CONNECTION_CAP: float = 40.0
    MULTI_ACCOUNT_PENALTY: float = 20.0
    PROPAGATION_THRESHOLD: float = 0.6
    PROPAGATION_POINTS: float = 20.0
    PROPAGATION_CAP: float = 30.0
    TRUST_NEUTRAL: int = 500
    TRUST_MAX: int = 1000
    TRUST_ADJUSTMENT_MAX: float = 10.0
    MULTIPLE_REPORTS_THRESHOLD: int = 3
    MULTIPLE_BLOCKS_THRESHOLD: int = 2

    # ── Signal sync ─────────────────────────────────────────
    SIMILARITY_THRESHOLD: float = 0.75
    MAX_SHARED_ACCOUNTS_PER_SIGNAL: int = 50

    # ── Cluster detection ───────────────────────────────────
    MIN_CLUSTER_SIZE: int = 3
    CLUSTER_EDGE_MIN_WEIGHT: float = 0.7
    AUTO_INVESTIGATE_CONFIDENCE: float = 0.8
    TEMPORAL_WINDOW_DAYS: float = 30.0
    BATCH_LEASE_TTL_SEC: int = 900
    BATCH_TIME_BUDGET_SEC: float = 60.0
    ABORT_CHECK_EVERY: int = 100

    # ── Confidence weights (must sum to 1.0) ────────────────
    CONF_WEIGHT_DEVICES: float = 0.30
    CONF_WEIGHT_IPS: float = 0.15
    CONF_WEIGHT_BEHAVIOR: float = 0.20
    CONF_WEIGHT_TEMPORAL: float = 0.15
    CONF_WEIGHT_TRANSACTIONS: float = 0.10
    CONF_WEIGHT_SIZE: float = 0.10
    CONF_DEVICE_SATURATION: float = 2.0
    CONF_IP_SATURATION: float = 3.0
    CONF_TAG_SATURATION: float = 2.0
    CONF_SIZE_SATURATION: float = 8.0

    # ── Pattern classification ──────────────────────────────
    DEVICE_DOMINANCE_RATIO: float = 0.6
    BOT_MIN_MEMBERS: int = 5
    BOT_TRUST_CEILING: float = 300.0
    BOT_TEMPORAL_MIN: float = 0.8
    BOT_SIGNATURE_DIVERSITY_MAX: float = 0.5
    REPORT_DOMINANCE_RATIO: float = 0.4
    REPORT_COUNT_HIGH: float = 3.0

    # ── Scheduling & retention ──────────────────────────────
    DETECTION_INTERVAL_SEC: int = 86400
    RESCORE_INTERVAL_SEC: int = 60
    RESOLVED_CLUSTER_RETENTION_DAYS: int = 0   # 0 = keep forever

    model_config = {"env_file": ".env", "case_sensitive": True}


settings = Settings()
