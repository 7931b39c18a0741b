from memindex.core.store import (
    store_memory,
    get_memory,
    delete_memory,
    update_importance,
    update_content,
    update_memory_metadata,
    merge_duplicates,
)
from memindex.core.retrieval import (
    RetrievalEngine,
    find_similar_memories,
)
from memindex.core.importance import (
    ImportanceAnalyzer,
    analyze_importance,
)
from memindex.core.scoring import Scorer
from memindex.core.fusion import (
    reciprocal_rank_fusion,
    fuse_ranked_lists,
)
from memindex.core.diversity import select_diverse
from memindex.core.dedup import (
    is_duplicate,
    partition_duplicates,
    content_hash,
    check_duplicate,
    find_duplicate_groups,
    merge_group,
)
