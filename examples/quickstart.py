"""
memindex quickstart: store memories, retrieve them ranked, tidy duplicates.

This example uses a mock embedding provider so you can run it without any
API keys or embedding models. In production, you'd swap it for a real
provider (see the EmbedProvider protocol in memindex/protocols.py, or pass
embed="ollama").

    python examples/quickstart.py
"""

import hashlib
import math
import tempfile
from pathlib import Path

import memindex
from memindex.config import MemindexConfig


# -- Step 0: Implement the provider protocol --------------------------------
# memindex doesn't bundle an embedding model. You bring your own.
# This mock lets you run the example without any external dependencies.

class LocalEmbedProvider:
    """Hash-based embeddings for demo purposes. Not useful for real retrieval."""

    def __init__(self, dims: int = 64):
        self.dims = dims

    def embed(self, text: str) -> list[float]:
        h = hashlib.shake_256(text.encode()).digest(self.dims)
        vec = [b / 255.0 * 2 - 1 for b in h]
        norm = math.sqrt(sum(x * x for x in vec)) or 1.0
        return [x / norm for x in vec]

    def embed_query(self, text: str) -> list[float]:
        return self.embed(text)


# -- Step 1: Initialize memindex --------------------------------------------

with tempfile.TemporaryDirectory() as tmp:
    config = MemindexConfig(db_path=Path(tmp) / "demo.db", embed_dims=64)
    memindex.init(config=config, embed=LocalEmbedProvider(dims=64))

    # -- Step 2: Store some memories ----------------------------------------

    from memindex.core.store import store_memory

    store_memory("Morgan is the tech lead on the Atlas project", user_id="demo", memory_type="fact")
    store_memory("The team prefers Rust for backend services", user_id="demo", memory_type="semantic")
    store_memory("Atlas is a geospatial mapping tool for field researchers", user_id="demo", memory_type="fact")
    store_memory("Important: the Atlas demo deadline is 2024-06-01", user_id="demo")
    store_memory("Started building Atlas in March 2024", user_id="demo")
    again = store_memory("started building atlas in march 2024", user_id="demo")

    print(f"Stored 5 memories (the 6th was an exact duplicate of {again}).\n")

    # -- Step 3: Retrieve with hybrid search --------------------------------

    from memindex.core.retrieval import find_similar_memories

    results = find_similar_memories("Tell me about Atlas", limit=3, user_id="demo")
    print("Query: 'Tell me about Atlas'")
    for mem in results:
        print(f"  [{mem['search_type']:6}] {mem['score']:.3f}  {mem['content']}")

    print()

    # -- Step 4: Importance of arbitrary text -------------------------------

    from memindex.core.importance import analyze_importance

    for text in ("ok thanks", "Remember: rotate the API key before 2024-07-01!"):
        print(f"importance({text!r}) = {analyze_importance(text):.2f}")

    print()

    # -- Step 5: Duplicate hygiene ------------------------------------------

    from memindex.core.store import merge_duplicates

    plan = merge_duplicates("demo", dry_run=True)
    print(f"Duplicate groups found: {len(plan)}")
    print("\nDone.")
