"""
Memory system for NPC agents.

This module implements a per-agent memory store holding episodic, semantic,
procedural and emotional memories, with associative links between related
memories, consolidation of important memories, a forgetting curve and
compression of near-duplicate memories.
"""

import bisect
import json
import logging
import math
from collections import Counter, deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any
from uuid import uuid4

from config.settings import MemoryConfig, get_settings
from mind.errors import InvalidMemoryError
from mind.utils import DAY_MS, HOUR_MS, WEEK_MS, clamp01, mean_abs, now_ms

logger = logging.getLogger(__name__)


class MemoryCategory(str, Enum):
    """Broad kinds of memory kept in separate maps."""

    EPISODIC = "episodic"
    SEMANTIC = "semantic"
    PROCEDURAL = "procedural"
    EMOTIONAL = "emotional"


class AssociationKind(str, Enum):
    TEMPORAL = "temporal"
    CONTEXTUAL = "contextual"


# Record types that map directly onto a category
_TYPE_CATEGORIES = {
    "interaction": MemoryCategory.EPISODIC,
    "event": MemoryCategory.EPISODIC,
    "knowledge": MemoryCategory.SEMANTIC,
    "fact": MemoryCategory.SEMANTIC,
    "skill": MemoryCategory.PROCEDURAL,
    "procedure": MemoryCategory.PROCEDURAL,
}

_CLAMPED_FIELDS = ("importance", "strength")


@dataclass(eq=False)
class MemoryRecord:
    """
    A single memory owned by one agent.

    Attributes:
        content: What is remembered (text or a mapping). Required.
        type: Free-form record type ("event", "interaction", "fact", ...).
        id: Unique identifier, assigned by the store.
        owner_id: Agent that owns this memory.
        category: Memory category; resolved by the store when not given.
        context: Flat key/value description of the situation.
        emotional_context: Emotion name to intensity at the time of storage.
        emotional_impact: Signed overall emotional impact, if known.
        source: Entity that caused the memory, if any.
        target: Entity the memory is about, if any.
        timestamp: Creation time in epoch milliseconds.
        importance: How much the memory matters, always within [0, 1].
        strength: How durable the memory is, always within [0, 1].
        access_count: Number of times the memory was returned by a query.
        last_accessed: When the memory was last returned by a query.
        consolidated: Whether the memory has been promoted to durable storage.
        consolidated_at: When the memory was consolidated.
        compressed_from: Number of memories merged into this one (0 if none).
        awareness: Awareness of the owner when the memory was recorded, if known.
    """

    content: Any = None
    type: str = "event"
    id: str = ""
    owner_id: str = ""
    category: MemoryCategory | None = None
    context: dict[str, Any] = field(default_factory=dict)
    emotional_context: dict[str, float] | None = None
    emotional_impact: float | None = None
    source: str | None = None
    target: str | None = None
    timestamp: float | None = None
    importance: float = 0.5
    strength: float | None = None
    access_count: int = 0
    last_accessed: float | None = None
    consolidated: bool = False
    consolidated_at: float | None = None
    compressed_from: int = 0
    awareness: float | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """
        Normalize fields on every write.

        Importance and strength are clamped to [0, 1], a missing or
        non-mapping context becomes empty and a non-mapping emotional
        context becomes None.
        """
        if name in _CLAMPED_FIELDS and value is not None:
            value = clamp01(value)
        elif name == "category" and value is not None and not isinstance(value, MemoryCategory):
            value = MemoryCategory(value)
        elif name == "context":
            value = dict(value) if isinstance(value, Mapping) else {}
        elif name == "emotional_context" and not isinstance(value, Mapping):
            value = None
        super().__setattr__(name, value)

    def __hash__(self) -> int:
        """Hash by unique id for use in sets and dicts."""
        return hash(self.id)

    def __eq__(self, other: object) -> bool:
        """Equality based on id."""
        if isinstance(other, MemoryRecord):
            return self.id == other.id
        return False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["category"] = self.category.value if self.category else None
        data["context"] = dict(self.context)
        if self.emotional_context is not None:
            data["emotional_context"] = dict(self.emotional_context)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MemoryRecord":
        """
        Create from dictionary.

        Raises:
            InvalidMemoryError: If the data has no content.
        """
        known = {f.name for f in fields(cls)}
        record = cls(**{k: v for k, v in data.items() if k in known})
        validate_record(record)
        return record


@dataclass
class Association:
    """A directed, weighted link between two memories."""

    from_id: str
    to_id: str
    weight: float
    kind: AssociationKind = AssociationKind.TEMPORAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_id": self.from_id,
            "to_id": self.to_id,
            "weight": self.weight,
            "kind": self.kind.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Association":
        return cls(
            from_id=data["from_id"],
            to_id=data["to_id"],
            weight=clamp01(data.get("weight", 0.0)),
            kind=AssociationKind(data.get("kind", AssociationKind.TEMPORAL.value)),
        )


@dataclass
class QueryCriteria:
    """
    Memory query parameters.

    Exactly one primary mode is used, checked in this order: ``type``,
    ``context``, ``associated_with``, ``time_range``, ``search``. The
    remaining fields are filters applied to whatever the primary mode found.
    """

    type: str | None = None
    context: dict[str, Any] | None = None
    associated_with: str | None = None
    time_range: tuple[float, float] | None = None
    search: str | None = None
    min_importance: float | None = None
    category: MemoryCategory | str | None = None
    limit: int | None = None

    @classmethod
    def from_value(cls, value: "QueryCriteria | Mapping[str, Any] | None") -> "QueryCriteria":
        """Accept either a QueryCriteria or a plain mapping."""
        if value is None:
            return cls()
        if isinstance(value, QueryCriteria):
            return value
        data = dict(value)
        time_range = data.get("time_range")
        if isinstance(time_range, Mapping):
            data["time_range"] = (time_range["start"], time_range["end"])
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def validate_record(record: MemoryRecord) -> None:
    """Raise InvalidMemoryError if the record cannot be stored."""
    if record.content is None:
        raise InvalidMemoryError(f"Memory {record.id or '<new>'} has no content")


def emotional_intensity(emotions: Mapping[str, Any] | None) -> float:
    """Mean absolute intensity of an emotional context."""
    return mean_abs(emotions)


def compare_contexts(ctx1: Mapping[str, Any], ctx2: Mapping[str, Any]) -> float:
    """Fraction of shared context keys whose values are equal."""
    shared = [key for key in ctx1 if key in ctx2]
    if not shared:
        return 0.0
    matches = sum(1 for key in shared if ctx1[key] == ctx2[key])
    return matches / len(shared)


def compare_emotions(emo1: Mapping[str, Any] | None, emo2: Mapping[str, Any] | None) -> float:
    """Mean closeness (1 - |difference|) over shared emotions."""
    if not emo1 or not emo2:
        return 0.0
    scores = []
    for emotion, value in emo1.items():
        other = emo2.get(emotion)
        if isinstance(value, (int, float)) and isinstance(other, (int, float)):
            scores.append(1.0 - abs(value - other))
    return sum(scores) / len(scores) if scores else 0.0


def memory_similarity(mem1: MemoryRecord, mem2: MemoryRecord) -> float:
    """
    Weighted similarity between two memories in [0, 1].

    Type match contributes 0.3, context overlap 0.3, temporal proximity
    (day-scale exponential) 0.2 and emotional closeness 0.2. Terms whose
    inputs are missing contribute nothing.
    """
    similarity = 0.0

    if mem1.type == mem2.type:
        similarity += 0.3

    if mem1.context and mem2.context:
        similarity += 0.3 * compare_contexts(mem1.context, mem2.context)

    if mem1.timestamp is not None and mem2.timestamp is not None:
        time_diff = abs(mem1.timestamp - mem2.timestamp)
        similarity += 0.2 * math.exp(-time_diff / DAY_MS)

    if mem1.emotional_context and mem2.emotional_context:
        similarity += 0.2 * compare_emotions(mem1.emotional_context, mem2.emotional_context)

    return clamp01(similarity)


def extract_elements(content: Any) -> set[str]:
    """Elements used for pattern extraction: long words of text, keys of mappings."""
    if isinstance(content, str):
        return {word for word in content.split() if len(word) > 3}
    if isinstance(content, Mapping):
        return {str(key) for key in content}
    return set()


def serialize_content(value: Any) -> str:
    """Lower-cased JSON form used for free-text search."""
    if isinstance(value, str):
        return value.lower()
    return json.dumps(value, default=str, sort_keys=True).lower()


class MemoryStore:
    """
    In-memory store of one agent's memories.

    Memories live in one map per category, keyed by id. Associations are
    adjacency lists of ``Association`` keyed by the source memory id, and
    several indices (temporal hour buckets, context ``key:value`` pairs and
    importance) speed up retrieval. The store performs no I/O; use
    ``to_dict``/``from_dict`` to hand its state to a persistence layer.
    """

    def __init__(
        self,
        owner_id: str,
        config: MemoryConfig | None = None,
        clock: Callable[[], float] | None = None,
    ):
        """
        Initialize the memory store.

        Args:
            owner_id: Unique identifier for the agent this memory belongs to.
            config: Memory tunables; defaults to the global settings.
            clock: Returns the current time in epoch milliseconds.
        """
        self.owner_id = owner_id
        self.config = config or get_settings().memory
        self._clock = clock or now_ms

        self._memories: dict[MemoryCategory, dict[str, MemoryRecord]] = {
            category: {} for category in MemoryCategory
        }
        self._id_to_category: dict[str, MemoryCategory] = {}

        # Working memory (most recent first), deduplicated by id
        self._working: deque[str] = deque(maxlen=self.config.working_memory_size)

        # Association graph
        self._associations: dict[str, list[Association]] = {}

        # Indices
        self._temporal_index: dict[int, list[str]] = {}
        self._contextual_index: dict[str, list[str]] = {}
        self._importance_index: list[tuple[float, str]] = []  # (-importance, id), ascending

        self._consolidation_queue: deque[str] = deque()

        self.stats: dict[str, Any] = {
            "total_memories": 0,
            "consolidated_memories": 0,
            "forgotten_memories": 0,
            "compressed_memories": 0,
            "compression_ratio": 1.0,
            "strongest_memory": None,
            "oldest_memory": None,
        }

    def __len__(self) -> int:
        return len(self._id_to_category)

    def __contains__(self, memory_id: object) -> bool:
        return memory_id in self._id_to_category

    @property
    def working_memory(self) -> tuple[MemoryRecord, ...]:
        """Recently stored memories, most recent first."""
        return tuple(self._memories[self._id_to_category[mid]][mid] for mid in self._working)

    @property
    def consolidation_queue(self) -> tuple[str, ...]:
        return tuple(self._consolidation_queue)

    def get(self, memory_id: str) -> MemoryRecord | None:
        """Get a memory by id without touching its access statistics."""
        category = self._id_to_category.get(memory_id)
        if category is None:
            return None
        return self._memories[category].get(memory_id)

    def all_memories(self) -> list[MemoryRecord]:
        """All stored memories across categories."""
        return [m for memories in self._memories.values() for m in memories.values()]

    def by_category(self, category: MemoryCategory | str) -> list[MemoryRecord]:
        return list(self._memories[MemoryCategory(category)].values())

    def associations_of(self, memory_id: str) -> list[Association]:
        """Outgoing associations of a memory."""
        return list(self._associations.get(memory_id, []))

    # Storing

    def store(self, record: MemoryRecord | Mapping[str, Any]) -> str | None:
        """
        Store a new memory.

        Missing fields fall back to defaults. A record without content is
        logged and rejected rather than raised.

        Args:
            record: The memory to store, as a record or a plain mapping.

        Returns:
            The new memory id, or None if the record was rejected.
        """
        now = self._clock()
        try:
            if not isinstance(record, MemoryRecord):
                record = MemoryRecord.from_dict(record)
            validate_record(record)
            self._prepare(record, now)
        except (InvalidMemoryError, TypeError, ValueError) as e:
            logger.warning(f"{self.owner_id}: rejected memory: {e}")
            return None

        record.id = f"{self.owner_id}_{int(now)}_{uuid4().hex[:9]}"
        record.owner_id = self.owner_id

        self._insert(record)
        self._update_working_memory(record)
        self._create_associations(record)
        self._update_indices(record)
        self._update_stats(record)

        if record.importance > self.config.consolidation_threshold:
            self._consolidation_queue.append(record.id)

        if len(self) > self.config.max_memories and self._evict_weakest(keep=record.id) == record.id:
            return None

        logger.debug(f"{self.owner_id}: stored {record.category.value} memory {record.id}")
        return record.id

    def _prepare(self, record: MemoryRecord, now: float) -> None:
        """
        Fill in defaults and coerce numeric fields before anything is stored.

        Raises:
            TypeError, ValueError: If a numeric field cannot be coerced.
        """
        record.timestamp = now if record.timestamp is None else float(record.timestamp)
        if record.strength is None:
            record.strength = 0.5
        if record.importance is None:
            record.importance = 0.5
        if record.emotional_impact is not None:
            record.emotional_impact = float(record.emotional_impact)
        record.access_count = 0
        record.category = self._categorize(record)

        if record.emotional_context and record.importance:
            intensity = emotional_intensity(record.emotional_context)
            record.importance = record.importance * (1 + intensity * self.config.emotional_boost)

    def _categorize(self, record: MemoryRecord) -> MemoryCategory:
        """Resolve the category: explicit field, then type heuristic, then episodic."""
        if record.category is not None:
            return record.category
        if record.type in _TYPE_CATEGORIES:
            return _TYPE_CATEGORIES[record.type]
        if record.emotional_context and record.emotional_impact:
            return MemoryCategory.EMOTIONAL
        return MemoryCategory.EPISODIC

    def _insert(self, record: MemoryRecord) -> None:
        self._memories[record.category][record.id] = record
        self._id_to_category[record.id] = record.category

    def _update_working_memory(self, record: MemoryRecord) -> None:
        if record.id in self._working:
            self._working.remove(record.id)
        self._working.appendleft(record.id)

    def _create_associations(self, record: MemoryRecord) -> None:
        """Link the record to similar working-memory items and to context matches."""
        new_edges: list[Association] = []

        for other_id in self._working:
            if other_id == record.id:
                continue
            other = self.get(other_id)
            if other is None:
                continue
            similarity = memory_similarity(record, other)
            if similarity > self.config.association_strength:
                new_edges.append(
                    Association(record.id, other.id, similarity, AssociationKind.TEMPORAL)
                )

        if record.context:
            for other in self._find_by_context(record.context, limit=5):
                if other.id != record.id:
                    new_edges.append(
                        Association(record.id, other.id, 0.5, AssociationKind.CONTEXTUAL)
                    )

        for edge in new_edges:
            self._add_edge(edge)
            self._add_edge(Association(edge.to_id, edge.from_id, edge.weight, edge.kind))

    def _add_edge(self, edge: Association) -> None:
        edges = self._associations.setdefault(edge.from_id, [])
        for existing in edges:
            if existing.to_id == edge.to_id and existing.kind == edge.kind:
                existing.weight = max(existing.weight, edge.weight)
                return
        edges.append(edge)

    def _update_indices(self, record: MemoryRecord) -> None:
        time_key = int(record.timestamp // HOUR_MS)
        self._temporal_index.setdefault(time_key, []).append(record.id)

        for key, value in record.context.items():
            self._contextual_index.setdefault(f"{key}:{value}", []).append(record.id)

        bisect.insort(self._importance_index, (-record.importance, record.id))

    def _update_stats(self, record: MemoryRecord) -> None:
        self.stats["total_memories"] += 1
        oldest = self.get(self.stats["oldest_memory"] or "")
        if oldest is None or record.timestamp < oldest.timestamp:
            self.stats["oldest_memory"] = record.id
        strongest = self.get(self.stats["strongest_memory"] or "")
        if strongest is None or record.importance > strongest.importance:
            self.stats["strongest_memory"] = record.id

    def _find_by_context(self, context: Mapping[str, Any], limit: int | None = None) -> list[MemoryRecord]:
        results: dict[str, MemoryRecord] = {}
        for key, value in context.items():
            for memory_id in self._contextual_index.get(f"{key}:{value}", []):
                memory = self.get(memory_id)
                if memory is not None:
                    results[memory_id] = memory
        found = list(results.values())
        return found[:limit] if limit is not None else found

    # Querying

    def query(self, criteria: QueryCriteria | Mapping[str, Any] | None = None, **kwargs: Any) -> list[MemoryRecord]:
        """
        Query memories and mark every returned memory as accessed.

        This is a mutating read: each returned record's ``access_count`` is
        incremented and ``last_accessed`` set to now, which feeds back into
        ranking and protects the record from the next forgetting pass. Use
        ``peek`` for a read without side effects.

        Args:
            criteria: Query parameters (or pass them as keyword arguments).

        Returns:
            Matching memories, best first.
        """
        results = self.peek(criteria, **kwargs)
        now = self._clock()
        for memory in results:
            memory.access_count += 1
            memory.last_accessed = now
        return results

    def peek(self, criteria: QueryCriteria | Mapping[str, Any] | None = None, **kwargs: Any) -> list[MemoryRecord]:
        """Run a query without updating access statistics."""
        query = QueryCriteria.from_value(criteria)
        if kwargs:
            query = replace(query, **kwargs)

        mode_scores: dict[str, float] = {}
        by_association = False
        if query.type is not None:
            results = [m for m in self.all_memories() if m.type == query.type]
        elif query.context:
            results = self._find_by_context(query.context)
        elif query.associated_with is not None:
            results, mode_scores = self._query_by_association(query.associated_with)
            by_association = True
        elif query.time_range is not None:
            results = self._query_by_time_range(*query.time_range)
        elif query.search:
            results, mode_scores = self._search(query.search)
        else:
            return []

        if query.min_importance is not None:
            results = [m for m in results if m.importance >= query.min_importance]
        if query.category is not None:
            category = MemoryCategory(query.category)
            results = [m for m in results if m.category == category]

        now = self._clock()
        if by_association:
            # Ranked by edge weight, ties broken by relevance
            results.sort(
                key=lambda m: (mode_scores.get(m.id, 0.0), self._relevance_score(m, now)),
                reverse=True,
            )
        else:
            results.sort(
                key=lambda m: self._relevance_score(m, now) + mode_scores.get(m.id, 0.0),
                reverse=True,
            )

        if query.limit is not None:
            results = results[: query.limit]
        return results

    def _query_by_association(self, memory_id: str) -> tuple[list[MemoryRecord], dict[str, float]]:
        weights: dict[str, float] = {}
        for edge in self._associations.get(memory_id, []):
            if edge.to_id in self:
                weights[edge.to_id] = max(weights.get(edge.to_id, 0.0), edge.weight)
        return [self.get(mid) for mid in weights], weights

    def _query_by_time_range(self, start: float, end: float) -> list[MemoryRecord]:
        start_key, end_key = int(start // HOUR_MS), int(end // HOUR_MS)
        results = []
        for time_key, bucket in self._temporal_index.items():
            if start_key <= time_key <= end_key:
                for memory_id in bucket:
                    memory = self.get(memory_id)
                    if memory is not None and start <= memory.timestamp <= end:
                        results.append(memory)
        return results

    def most_important(self, limit: int = 10) -> list[MemoryRecord]:
        """The most important memories, without touching access statistics."""
        results = []
        for _, memory_id in self._importance_index:
            memory = self.get(memory_id)
            if memory is not None:
                results.append(memory)
            if len(results) >= limit:
                break
        return results

    def _search(self, term: str) -> tuple[list[MemoryRecord], dict[str, float]]:
        term = term.lower()
        scores: dict[str, float] = {}
        for memory in self.all_memories():
            relevance = 0.0
            if memory.content is not None and term in serialize_content(memory.content):
                relevance += 0.5
            if memory.type and term in memory.type.lower():
                relevance += 0.3
            if memory.context and term in serialize_content(memory.context):
                relevance += 0.2
            if relevance > 0:
                scores[memory.id] = relevance
        return [self.get(mid) for mid in scores], scores

    def _relevance_score(self, memory: MemoryRecord, now: float) -> float:
        """Recency (week scale) + importance + access frequency + consolidation bonus."""
        age = max(0.0, now - memory.timestamp)
        score = math.exp(-age / WEEK_MS)
        score += memory.importance * 2
        score += math.log(1 + memory.access_count) * 0.5
        if memory.consolidated:
            score += 0.5
        return score

    # Consolidation and forgetting

    def consolidate(self, record: MemoryRecord | str) -> bool:
        """
        Promote a memory to durable storage.

        Strength is multiplied by 1.5 and outgoing associations by 1.2 (both
        capped at 1). Consolidating an already consolidated memory is a no-op.

        Returns:
            True if the memory was consolidated by this call.
        """
        memory_id = record if isinstance(record, str) else record.id
        memory = self.get(memory_id)
        if memory is None:
            logger.debug(f"{self.owner_id}: cannot consolidate unknown memory {memory_id}")
            return False
        if memory.consolidated:
            return False

        memory.strength = min(1.0, memory.strength * 1.5)
        memory.consolidated = True
        memory.consolidated_at = self._clock()

        for edge in self._associations.get(memory.id, []):
            edge.weight = min(1.0, edge.weight * 1.2)

        self.stats["consolidated_memories"] += 1
        return True

    def process_consolidation(self) -> int:
        """
        Drain the consolidation queue.

        Each queued memory is first offered for compression (when enabled)
        and then consolidated.

        Returns:
            Number of memories consolidated.
        """
        consolidated = 0
        while self._consolidation_queue:
            memory_id = self._consolidation_queue.popleft()
            memory = self.get(memory_id)
            if memory is None:
                continue
            if self.config.compression_enabled:
                compressed = self.compress(memory)
                if compressed is not None:
                    memory = compressed
            if self.consolidate(memory):
                consolidated += 1
        return consolidated

    def process_forgetting(self, now: float | None = None) -> list[str]:
        """
        Apply the forgetting curve to every memory and evict weak ones.

        Memories accessed within the grace period are skipped. Otherwise
        strength decays exponentially with age (day scale), offset by a
        retention bonus for importance, consolidation and frequent access;
        strength never increases during this pass. Memories left below the
        forget threshold are removed together with their associations.

        Returns:
            Ids of evicted memories.
        """
        now = self._clock() if now is None else now
        rate = self.config.forgetting_rate
        to_remove: list[str] = []

        for memory in self.all_memories():
            if memory.last_accessed is not None and now - memory.last_accessed < self.config.grace_period_ms:
                continue

            age = max(0.0, now - memory.timestamp)
            decay_factor = math.exp(-rate * age / DAY_MS)

            retention_bonus = memory.importance * 0.3
            if memory.consolidated:
                retention_bonus += 0.3
            if memory.access_count > 5:
                retention_bonus += 0.2

            memory.strength = min(memory.strength, memory.strength * decay_factor + retention_bonus)

            if memory.strength < self.config.forget_threshold:
                to_remove.append(memory.id)

        for memory_id in to_remove:
            self.remove(memory_id)
            self.stats["forgotten_memories"] += 1

        if to_remove:
            logger.debug(f"{self.owner_id}: forgot {len(to_remove)} memories")
        return to_remove

    def remove(self, memory_id: str) -> MemoryRecord | None:
        """Remove a memory, its associations in both directions and its index entries."""
        category = self._id_to_category.pop(memory_id, None)
        if category is None:
            return None
        memory = self._memories[category].pop(memory_id)

        for edge in self._associations.pop(memory_id, []):
            back = self._associations.get(edge.to_id)
            if back:
                self._associations[edge.to_id] = [e for e in back if e.to_id != memory_id]
        # Inbound edges without a reverse (e.g. restored from a truncated snapshot)
        for source_id, edges in self._associations.items():
            if any(e.to_id == memory_id for e in edges):
                self._associations[source_id] = [e for e in edges if e.to_id != memory_id]

        if memory_id in self._working:
            self._working.remove(memory_id)
        if memory_id in self._consolidation_queue:
            self._consolidation_queue.remove(memory_id)

        time_key = int(memory.timestamp // HOUR_MS)
        bucket = self._temporal_index.get(time_key)
        if bucket and memory_id in bucket:
            bucket.remove(memory_id)
            if not bucket:
                del self._temporal_index[time_key]
        for key, value in memory.context.items():
            context_key = f"{key}:{value}"
            ids = self._contextual_index.get(context_key)
            if ids and memory_id in ids:
                ids.remove(memory_id)
                if not ids:
                    del self._contextual_index[context_key]
        self._importance_index = [entry for entry in self._importance_index if entry[1] != memory_id]

        return memory

    def _evict_weakest(self, keep: str | None = None) -> str | None:
        """
        Evict the weakest memory, preferring unconsolidated ones.

        ``keep`` is only evicted when it is the sole memory left.

        Returns:
            The evicted id, or None if the store is empty.
        """
        others = [m for m in self.all_memories() if m.id != keep]
        candidates = [m for m in others if not m.consolidated] or others or self.all_memories()
        if not candidates:
            return None
        weakest = min(candidates, key=lambda m: (m.strength, m.timestamp))
        self.remove(weakest.id)
        self.stats["forgotten_memories"] += 1
        logger.debug(f"{self.owner_id}: memory limit reached, evicted {weakest.id}")
        return weakest.id

    # Compression

    def find_similar(self, record: MemoryRecord) -> list[MemoryRecord]:
        """Memories in the same category that are near-duplicates of ``record``."""
        category = record.category or MemoryCategory.EPISODIC
        return [
            other for other in self._memories[category].values()
            if other.id != record.id
            and memory_similarity(record, other) > self.config.compression_similarity
        ]

    def compress(self, record: MemoryRecord) -> MemoryRecord | None:
        """
        Merge a memory and its near-duplicates into one synthetic memory.

        Compression only happens when more than ``compression_min_group``
        similar memories exist. The synthetic memory keeps the elements
        shared by over 70% of the group plus up to three raw examples; the
        originals are removed.

        Returns:
            The synthetic memory, or None if nothing was compressed.
        """
        similar = self.find_similar(record)
        if len(similar) <= self.config.compression_min_group:
            return None

        group = [record, *similar]
        size_before = len(self)

        element_counts: Counter[str] = Counter()
        for memory in group:
            element_counts.update(extract_elements(memory.content))
        pattern = sorted(e for e, count in element_counts.items() if count > len(group) * 0.7)

        shared_context = {
            key: value for key, value in record.context.items()
            if all(m.context.get(key) == value for m in group)
        }

        compressed = MemoryRecord(
            content={
                "pattern": pattern,
                "examples": [m.content for m in group[:3]],
                "original_type": record.type,
            },
            type="compressed",
            id=f"{self.owner_id}_compressed_{uuid4().hex[:9]}",
            owner_id=self.owner_id,
            category=record.category,
            context=shared_context,
            emotional_context=record.emotional_context,
            timestamp=record.timestamp,
            importance=max(m.importance for m in group),
            strength=max(m.strength for m in group),
            consolidated=True,
            consolidated_at=self._clock(),
            compressed_from=sum(max(1, m.compressed_from) for m in group),
        )

        for memory in group:
            self.remove(memory.id)

        self._insert(compressed)
        self._update_working_memory(compressed)
        self._update_indices(compressed)

        self.stats["compressed_memories"] += len(group)
        self.stats["compression_ratio"] *= size_before / (size_before - len(group) + 1)

        logger.info(f"{self.owner_id}: compressed {len(group)} memories into {compressed.id}")
        return compressed

    # Introspection and serialization

    def get_stats(self) -> dict[str, Any]:
        """Summary statistics for this store."""
        return {
            **self.stats,
            "by_category": {c.value: len(m) for c, m in self._memories.items()},
            "working_memory_size": len(self._working),
            "total_associations": sum(len(e) for e in self._associations.values()),
            "queued_for_consolidation": len(self._consolidation_queue),
        }

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to a plain dictionary for a persistence layer.

        Only the 100 most recent memories per category and the first 10
        associations per memory are kept.
        """
        memories: dict[str, list[dict[str, Any]]] = {}
        kept: set[str] = set()
        for category, records in self._memories.items():
            recent = sorted(records.values(), key=lambda m: m.timestamp)[-100:]
            memories[category.value] = [m.to_dict() for m in recent]
            kept.update(m.id for m in recent)

        associations = {
            memory_id: [e.to_dict() for e in edges[:10] if e.to_id in kept]
            for memory_id, edges in self._associations.items()
            if memory_id in kept
        }

        return {
            "owner_id": self.owner_id,
            "memories": memories,
            "associations": associations,
            "working_memory": [mid for mid in self._working if mid in kept],
            "consolidation_queue": [mid for mid in self._consolidation_queue if mid in kept],
            "stats": dict(self.stats),
        }

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        config: MemoryConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> "MemoryStore":
        """Restore a store from ``to_dict`` output. Malformed records are skipped."""
        store = cls(data["owner_id"], config=config, clock=clock)

        for category, records in (data.get("memories") or {}).items():
            for item in records:
                try:
                    record = MemoryRecord.from_dict({**item, "category": category})
                except (InvalidMemoryError, TypeError, ValueError) as e:
                    logger.warning(f"{store.owner_id}: skipped malformed memory: {e}")
                    continue
                if record.strength is None:
                    record.strength = 0.5
                if record.importance is None:
                    record.importance = 0.5
                if record.timestamp is None:
                    record.timestamp = store._clock()
                store._insert(record)
                store._update_indices(record)

        for memory_id, edges in (data.get("associations") or {}).items():
            if memory_id not in store:
                continue
            for edge in edges:
                association = Association.from_dict(edge)
                if association.to_id in store:
                    store._add_edge(association)

        working = [mid for mid in data.get("working_memory", []) if mid in store]
        for memory_id in reversed(working):
            store._working.appendleft(memory_id)
        store._consolidation_queue.extend(
            mid for mid in data.get("consolidation_queue", []) if mid in store
        )
        store.stats.update(data.get("stats") or {})
        return store
