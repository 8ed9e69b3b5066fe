"""In-process stand-in for the MongoDB station collection.

Accepts the same ``pymongo`` bulk operations and aggregation pipelines the
services send to a real server, for the subset of MongoDB operators those
services emit. Anything outside that subset raises ``NotImplementedError``
instead of silently diverging from server behaviour.
"""

from __future__ import annotations

import copy
from datetime import timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from bson import ObjectId, json_util
from pymongo.errors import BulkWriteError, InvalidOperation, WriteError
from pymongo.results import BulkWriteResult

_JSON_OPTIONS = json_util.RELAXED_JSON_OPTIONS.with_options(tz_aware=True, tzinfo=timezone.utc)
_MISSING = object()
_COMPARISONS = {
    "$eq": lambda left, right: left == right,
    "$ne": lambda left, right: left != right,
    "$gt": lambda left, right: left > right,
    "$gte": lambda left, right: left >= right,
    "$lt": lambda left, right: left < right,
    "$lte": lambda left, right: left <= right,
}


class _BulkRecorder:
    """Receives operations through the driver's ``_add_to_bulk`` hook."""

    def __init__(self) -> None:
        self.updates: List[Tuple[Mapping[str, Any], Mapping[str, Any], bool]] = []

    def add_update(self, selector, update, multi, upsert, **_options) -> None:
        if multi:
            raise NotImplementedError("Multi-document updates are not supported.")
        self.updates.append((selector, update, bool(upsert)))

    def add_insert(self, *_args, **_kwargs) -> None:
        raise NotImplementedError("InsertOne is not supported.")

    def add_replace(self, *_args, **_kwargs) -> None:
        raise NotImplementedError("ReplaceOne is not supported.")

    def add_delete(self, *_args, **_kwargs) -> None:
        raise NotImplementedError("Delete operations are not supported.")


def _lookup(document: Any, path: str) -> Any:
    current = document
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part, _MISSING)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
        if current is _MISSING:
            return _MISSING
    return current


def _assign(document: Dict[str, Any], path: str, value: Any) -> None:
    *parents, last = path.split(".")
    current = document
    for part in parents:
        current = current.setdefault(part, {})
    current[last] = value


def _is_operator_expression(condition: Any) -> bool:
    return isinstance(condition, dict) and bool(condition) and all(
        key.startswith("$") for key in condition
    )


def _pull_matches(item: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and isinstance(item, dict):
        return all(item.get(key, _MISSING) == value for key, value in condition.items())
    return item == condition


class MockStationCollection:

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._documents: List[Dict[str, Any]] = []
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def bulk_write(self, requests: Iterable[Any], ordered: bool = True) -> BulkWriteResult:
        recorder = _BulkRecorder()
        for request in requests:
            request._add_to_bulk(recorder)
        if not recorder.updates:
            raise InvalidOperation("No operations to execute")

        outcome: Dict[str, Any] = {
            "writeErrors": [],
            "writeConcernErrors": [],
            "nInserted": 0,
            "nUpserted": 0,
            "nMatched": 0,
            "nModified": 0,
            "nRemoved": 0,
            "upserted": [],
        }
        with self._lock:
            for index, (selector, update, upsert) in enumerate(recorder.updates):
                try:
                    self._update_one(index, selector, update, upsert, outcome)
                except WriteError as exc:
                    outcome["writeErrors"].append(
                        {
                            "index": index,
                            "code": exc.code,
                            "errmsg": str(exc),
                            "op": {"q": selector, "u": update},
                        }
                    )
                    if ordered:
                        break
            self._persist()

        if outcome["writeErrors"]:
            raise BulkWriteError(outcome)
        return BulkWriteResult(outcome, True)

    def find(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        projection: Optional[Mapping[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Return deep copies of matching documents."""

        with self._lock:
            matched = [
                copy.deepcopy(document)
                for document in self._documents
                if self._matches(document, filter or {})[0]
            ]
        if projection:
            return [self._project_fields(document, projection) for document in matched]
        return matched

    def aggregate(self, pipeline: Iterable[Mapping[str, Any]]) -> Iterator[Dict[str, Any]]:
        with self._lock:
            documents = copy.deepcopy(self._documents)

        for stage in pipeline:
            if len(stage) != 1:
                raise ValueError("A pipeline stage specification must contain exactly one field.")
            (name, spec), = stage.items()
            if name == "$match":
                documents = [doc for doc in documents if self._match_expression(doc, spec)]
            elif name == "$unwind":
                documents = list(self._unwind(documents, spec))
            elif name == "$group":
                documents = self._group(documents, spec)
            elif name == "$project":
                documents = [self._project_stage(doc, spec) for doc in documents]
            elif name == "$sort":
                documents = self._sort(documents, spec)
            else:
                raise NotImplementedError(f"Pipeline stage {name} is not supported.")
        return iter(documents)

    # Update path

    def _update_one(
        self,
        index: int,
        selector: Mapping[str, Any],
        update: Mapping[str, Any],
        upsert: bool,
        outcome: Dict[str, Any],
    ) -> None:
        for position, document in enumerate(self._documents):
            matched, array_position = self._matches(document, selector)
            if not matched:
                continue
            updated = copy.deepcopy(document)
            self._apply_update(updated, update, array_position, inserting=False)
            outcome["nMatched"] += 1
            if updated != document:
                self._documents[position] = updated
                outcome["nModified"] += 1
            return

        if not upsert:
            return
        inserted: Dict[str, Any] = {"_id": ObjectId()}
        for key, value in selector.items():
            if not key.startswith("$") and "." not in key and not _is_operator_expression(value):
                inserted[key] = copy.deepcopy(value)
        self._apply_update(inserted, update, None, inserting=True)
        self._documents.append(inserted)
        outcome["nUpserted"] += 1
        outcome["upserted"].append({"index": index, "_id": inserted["_id"]})

    def _matches(
        self, document: Mapping[str, Any], selector: Mapping[str, Any]
    ) -> Tuple[bool, Optional[int]]:
        """Match an update filter; also returns the index the ``$`` operator resolves to."""
        position: Optional[int] = None
        for key, condition in selector.items():
            if key == "$and":
                for clause in condition:
                    matched, clause_position = self._matches(document, clause)
                    if not matched:
                        return False, None
                    if position is None:
                        position = clause_position
                continue
            if key.startswith("$"):
                raise NotImplementedError(f"Query operator {key} is not supported.")

            head, _, tail = key.partition(".")
            value = document.get(head, _MISSING)
            if not tail:
                if value is _MISSING or value != condition:
                    return False, None
                continue
            if isinstance(value, list):
                for element_index, element in enumerate(value):
                    if _lookup(element, tail) == condition:
                        if position is None:
                            position = element_index
                        break
                else:
                    return False, None
            elif _lookup(value, tail) != condition:
                return False, None
        return True, position

    def _apply_update(
        self,
        document: Dict[str, Any],
        update: Mapping[str, Any],
        position: Optional[int],
        inserting: bool,
    ) -> None:
        for operator, fields in update.items():
            if operator == "$setOnInsert":
                if inserting:
                    for path, value in fields.items():
                        _assign(document, path, copy.deepcopy(value))
            elif operator == "$set":
                for path, value in fields.items():
                    _assign(document, path, copy.deepcopy(value))
            elif operator in ("$push", "$addToSet"):
                for path, value in fields.items():
                    target = self._array_at(document, path, position)
                    if isinstance(value, dict) and "$each" in value:
                        items = value["$each"]
                    else:
                        items = [value]
                    for item in items:
                        if operator == "$addToSet" and item in target:
                            continue
                        target.append(copy.deepcopy(item))
            elif operator == "$pull":
                for path, condition in fields.items():
                    target = self._array_at(document, path, position, create=False)
                    if target is not None:
                        target[:] = [item for item in target if not _pull_matches(item, condition)]
            else:
                raise NotImplementedError(f"Update operator {operator} is not supported.")

    @staticmethod
    def _array_at(
        document: Dict[str, Any],
        path: str,
        position: Optional[int],
        create: bool = True,
    ) -> Optional[List[Any]]:
        *parents, last = path.split(".")
        container: Any = document
        for part in parents:
            if part == "$":
                if position is None or not isinstance(container, list):
                    raise WriteError(
                        "The positional operator did not find the match needed from the query.",
                        code=2,
                    )
                container = container[position]
            elif isinstance(container, dict):
                container = container.setdefault(part, {})
            else:
                raise WriteError(f"Cannot traverse {part!r} in path {path!r}.", code=28)

        if not isinstance(container, dict):
            raise WriteError(f"Cannot traverse {last!r} in path {path!r}.", code=28)
        array = container.get(last)
        if array is None:
            if not create:
                return None
            array = container[last] = []
        if not isinstance(array, list):
            raise WriteError(f"The field {path!r} must be an array.", code=2)
        return array

    # Read path

    def _match_expression(self, document: Mapping[str, Any], spec: Mapping[str, Any]) -> bool:
        for path, condition in spec.items():
            value = _lookup(document, path)
            if _is_operator_expression(condition):
                for operator, operand in condition.items():
                    compare = _COMPARISONS.get(operator)
                    if compare is None:
                        raise NotImplementedError(f"Match operator {operator} is not supported.")
                    if value is _MISSING or not compare(value, operand):
                        return False
            elif value is _MISSING or value != condition:
                return False
        return True

    @staticmethod
    def _unwind(documents: List[Dict[str, Any]], spec: Any) -> Iterator[Dict[str, Any]]:
        if not isinstance(spec, str) or not spec.startswith("$"):
            raise NotImplementedError("Only '$field.path' unwind specifications are supported.")
        path = spec[1:]
        for document in documents:
            value = _lookup(document, path)
            if value is _MISSING or value is None or value == []:
                continue
            for element in value if isinstance(value, list) else [value]:
                unwound = copy.deepcopy(document)
                _assign(unwound, path, copy.deepcopy(element))
                yield unwound

    def _group(self, documents: List[Dict[str, Any]], spec: Mapping[str, Any]) -> List[Dict[str, Any]]:
        accumulators = {name: expr for name, expr in spec.items() if name != "_id"}
        groups: Dict[Any, List[Dict[str, Any]]] = {}
        for document in documents:
            groups.setdefault(self._evaluate(document, spec["_id"]), []).append(document)

        results: List[Dict[str, Any]] = []
        for group_id, members in groups.items():
            row: Dict[str, Any] = {"_id": group_id}
            for name, expression in accumulators.items():
                (operator, operand), = expression.items()
                values = [self._evaluate(member, operand) for member in members]
                numbers = [
                    value for value in values
                    if isinstance(value, (int, float)) and not isinstance(value, bool)
                ]
                if operator == "$avg":
                    row[name] = sum(numbers) / len(numbers) if numbers else None
                elif operator == "$sum":
                    row[name] = sum(numbers)
                elif operator == "$min":
                    row[name] = min((v for v in values if v is not None), default=None)
                elif operator == "$max":
                    row[name] = max((v for v in values if v is not None), default=None)
                else:
                    raise NotImplementedError(f"Group accumulator {operator} is not supported.")
            results.append(row)
        return results

    def _project_stage(self, document: Dict[str, Any], spec: Mapping[str, Any]) -> Dict[str, Any]:
        projected: Dict[str, Any] = {}
        if spec.get("_id", 1) and "_id" in document:
            projected["_id"] = document["_id"]
        for name, expression in spec.items():
            if name == "_id":
                continue
            if expression is True or expression == 1:
                value = _lookup(document, name)
                if value is not _MISSING:
                    _assign(projected, name, value)
            elif expression is False or expression == 0:
                raise NotImplementedError("Exclusion projections are not supported.")
            else:
                projected[name] = self._evaluate(document, expression)
        return projected

    @staticmethod
    def _sort(documents: List[Dict[str, Any]], spec: Mapping[str, int]) -> List[Dict[str, Any]]:
        ordered = list(documents)
        for path, direction in reversed(list(spec.items())):
            ordered.sort(key=lambda doc: _lookup(doc, path), reverse=direction < 0)
        return ordered

    def _evaluate(self, document: Mapping[str, Any], expression: Any) -> Any:
        if isinstance(expression, str) and expression.startswith("$"):
            value = _lookup(document, expression[1:])
            return None if value is _MISSING else value
        if _is_operator_expression(expression):
            (operator, operand), = expression.items()
            if operator == "$literal":
                return operand
            if operator == "$round":
                value_expr, places = operand
                value = self._evaluate(document, value_expr)
                return None if value is None else round(value, places)
            raise NotImplementedError(f"Expression operator {operator} is not supported.")
        return expression

    @staticmethod
    def _project_fields(document: Dict[str, Any], projection: Mapping[str, Any]) -> Dict[str, Any]:
        include_id = projection.get("_id", 1)
        if all(path == "_id" for path in projection):
            projected = dict(document)
            if not include_id:
                projected.pop("_id", None)
            return projected

        projected = {}
        if include_id and "_id" in document:
            projected["_id"] = document["_id"]
        for path, flag in projection.items():
            if path == "_id":
                continue
            if not flag:
                raise NotImplementedError("Exclusion projections are not supported.")
            head, _, tail = path.partition(".")
            if head not in document:
                continue
            value = document[head]
            if not tail:
                projected[head] = value
            elif isinstance(value, list):
                slots = projected.setdefault(head, [{} for _ in value])
                for slot, element in zip(slots, value):
                    if isinstance(element, dict) and tail in element:
                        slot[tail] = element[tail]
            elif isinstance(value, dict) and tail in value:
                projected.setdefault(head, {})[tail] = value[tail]
        return projected

    # Persistence

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        self.persistence_path.write_text(
            json_util.dumps(self._documents, json_options=_JSON_OPTIONS, indent=2)
        )

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "[]"
            data = json_util.loads(raw, json_options=_JSON_OPTIONS)
        except (OSError, ValueError):
            data = []

        self._documents = [document for document in data if isinstance(document, dict)]
