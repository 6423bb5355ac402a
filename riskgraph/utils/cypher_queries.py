"""
Centralised Cypher query repository for the fraud signal graph.

Organisation
────────────
SCHEMA_*        – constraints & indexes (run once by scripts/setup_neo4j.py)
QUERY_*         – per-user signal reads
DETECT_*        – transaction-pattern tag queries
MAINT_*         – setup-script diagnostics

Neo4j Graph Schema (owned by the signal collectors, read-only here)
──────────────────
Nodes   :User  :Device  :IP  :Transaction
Edges   :USES_DEVICE  :ACCESSED_FROM  :SENT  :RECEIVED_BY
        :TRANSFERRED_TO  (User→User shortcut)
        :REPORTED  :BLOCKED  (User→User moderation signals)
User properties read here:
        created_at, trust_score, trust_tier, behavioral_signature
"""

# ==============================================================
# SCHEMA – constraints & indexes
# ==============================================================

SCHEMA_CONSTRAINTS: list[str] = [
    "CREATE CONSTRAINT user_id_uniq   IF NOT EXISTS FOR (u:User)   REQUIRE u.user_id    IS UNIQUE",
    "CREATE CONSTRAINT device_uniq    IF NOT EXISTS FOR (d:Device) REQUIRE d.device_id  IS UNIQUE",
    "CREATE CONSTRAINT ip_uniq        IF NOT EXISTS FOR (i:IP)     REQUIRE i.ip_address IS UNIQUE",
]

SCHEMA_INDEXES: list[str] = [
    "CREATE INDEX idx_user_signature IF NOT EXISTS FOR (u:User) ON (u.behavioral_signature)",
    "CREATE INDEX idx_user_trust     IF NOT EXISTS FOR (u:User) ON (u.trust_score)",
]

# ==============================================================
# QUERY – per-user signals
# ==============================================================

QUERY_TRUST_SCORE = """
MATCH (u:User {user_id: $user_id})
RETURN u.trust_score AS score,
       u.trust_tier  AS tier
"""

QUERY_USER_SIGNALS = """
MATCH (u:User {user_id: $user_id})
OPTIONAL MATCH (u)-[:USES_DEVICE]->(d:Device)
WITH u, collect(DISTINCT d.device_id) AS devices
OPTIONAL MATCH (u)-[:ACCESSED_FROM]->(i:IP)
WITH u, devices, collect(DISTINCT i.ip_address) AS ips
OPTIONAL MATCH (u)<-[rep:REPORTED]-(:User)
WITH u, devices, ips, count(rep) AS report_count
OPTIONAL MATCH (u)<-[blk:BLOCKED]-(:User)
RETURN devices,
       ips,
       coalesce(u.behavioral_signature, '') AS behavioral_signature,
       report_count,
       count(blk) AS block_count,
       CASE WHEN u.created_at IS NULL THEN null
            ELSE duration.inDays(u.created_at, datetime()).days END AS account_age_days
"""

QUERY_USERS_BY_DEVICE = """
MATCH (d:Device {device_id: $device_id})<-[:USES_DEVICE]-(u:User)
RETURN DISTINCT u.user_id AS user_id
ORDER BY user_id
LIMIT $limit
"""

QUERY_USERS_BY_IP = """
MATCH (i:IP {ip_address: $ip_address})<-[:ACCESSED_FROM]-(u:User)
RETURN DISTINCT u.user_id AS user_id
ORDER BY user_id
LIMIT $limit
"""

# Same behavioural signature → similarity 1.0; the collectors write the
# pairwise score on :SIMILAR_TO when they compute one.
QUERY_SIMILAR_USERS = """
MATCH (u:User {user_id: $user_id})
OPTIONAL MATCH (u)-[s:SIMILAR_TO]-(o:User)
  WHERE s.score >= $min_score
WITH u, collect({user_id: o.user_id, score: s.score}) AS scored
OPTIONAL MATCH (twin:User)
  WHERE u.behavioral_signature IS NOT NULL
    AND u.behavioral_signature <> ''
    AND twin.behavioral_signature = u.behavioral_signature
    AND twin <> u
WITH scored, collect({user_id: twin.user_id, score: 1.0}) AS twins
UNWIND scored + twins AS row
WITH row WHERE row.user_id IS NOT NULL
RETURN row.user_id AS user_id, max(row.score) AS score
ORDER BY score DESC, user_id
LIMIT $limit
"""

# ==============================================================
# DETECT – transaction-pattern tags for cluster evidence
# ==============================================================

DETECT_CIRCULAR_MEMBERS = """
MATCH (a:User)-[:TRANSFERRED_TO]->(b:User)-[:TRANSFERRED_TO]->(c:User)-[:TRANSFERRED_TO]->(a)
WHERE a.user_id IN $user_ids AND a <> b AND b <> c AND a <> c
RETURN DISTINCT a.user_id AS user_id
"""

DETECT_RELAY_MEMBERS = """
MATCH (u:User)
WHERE u.user_id IN $user_ids
OPTIONAL MATCH (u)<-[:RECEIVED_BY]-(ti:Transaction)
WITH u, coalesce(sum(ti.amount), 0) AS total_in
OPTIONAL MATCH (u)-[:SENT]->(to:Transaction)
WITH u, total_in, coalesce(sum(to.amount), 0) AS total_out
WHERE total_in > 0 AND total_out / total_in >= $min_flow_ratio
RETURN u.user_id AS user_id
"""

DETECT_CHARGEBACK_MEMBERS = """
MATCH (u:User)-[:SENT]->(t:Transaction)
WHERE u.user_id IN $user_ids AND t.status = 'CHARGEBACK'
RETURN DISTINCT u.user_id AS user_id
"""

# ==============================================================
# MAINT – diagnostics
# ==============================================================

MAINT_COUNT_NODES = """
MATCH (n)
WHERE n:User OR n:Device OR n:IP
RETURN labels(n)[0] AS label, count(n) AS count
ORDER BY count DESC
"""
