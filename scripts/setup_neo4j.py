#!/usr/bin/env python3
"""
setup_neo4j.py – Create the constraints and indexes the signal queries rely on,
and verify Neo4j connectivity.

Usage:
    python scripts/setup_neo4j.py          # from the repo root
"""

import os
import sys

# Ensure riskgraph is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from riskgraph.config import settings
from riskgraph.neo4j_manager import Neo4jManager
from riskgraph.utils.cypher_queries import MAINT_COUNT_NODES, SCHEMA_CONSTRAINTS, SCHEMA_INDEXES


def main():
    print(f"🔗 Connecting to Neo4j at {settings.NEO4J_URI} …")
    neo4j = Neo4jManager.get_instance()

    # sync driver only (no event loop)
    neo4j.connect_sync()
    print("✅ Connected")

    print("\n📋 Setting up schema …")
    neo4j.setup_schema(SCHEMA_CONSTRAINTS, SCHEMA_INDEXES)

    print("\n📊 Signal graph node counts:")
    counts = neo4j.run_sync(MAINT_COUNT_NODES)
    if counts:
        for row in counts:
            print(f"   {row['label']}: {row['count']}")
    else:
        print("   (no nodes yet)")

    neo4j._driver.close()
    print("\n✅ Neo4j setup complete!")


if __name__ == "__main__":
    main()
