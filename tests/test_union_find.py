import random

from riskgraph.core.union_find import UnionFind, connected_components


def test_lowest_id_is_representative():
    uf = UnionFind()
    uf.union("m", "z")
    uf.union("z", "c")
    assert uf.find("z") == "c"
    assert uf.find("m") == "c"


def test_union_is_idempotent_and_symmetric():
    uf = UnionFind()
    assert uf.union("a", "b") == uf.union("b", "a") == "a"
    assert uf.components() == {"a": ["a", "b"]}


def test_partition_independent_of_edge_order():
    edges = [("u5", "u3"), ("u3", "u9"), ("u1", "u2"), ("u7", "u8"), ("u8", "u6"), ("u2", "u4")]
    expected = connected_components(edges)
    rng = random.Random(7)
    for _ in range(20):
        shuffled = edges[:]
        rng.shuffle(shuffled)
        assert connected_components(shuffled) == expected
    assert expected == {
        "u1": ["u1", "u2", "u4"],
        "u3": ["u3", "u5", "u9"],
        "u6": ["u6", "u7", "u8"],
    }
