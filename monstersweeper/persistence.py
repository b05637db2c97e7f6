from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple
import os
import threading

try:
    from google.cloud import firestore  # type: ignore
except Exception:  # pragma: no cover
    firestore = None  # type: ignore


TransactionFn = Callable[[Any], Any]
Listener = Callable[[Any], None]


@dataclass(frozen=True)
class TransactionResult:
    """Outcome of ``transact``.

    ``before`` is the value the winning attempt read and ``after`` is what it
    wrote; both are private copies. When the body returns ``None`` nothing is
    written and ``committed`` is False.
    """

    committed: bool
    before: Any
    after: Any


class TransactionAborted(RuntimeError):
    pass


def split_path(path: str) -> List[str]:
    return [p for p in path.strip("/").split("/") if p]


def _child(node: Any, key: str) -> Any:
    if isinstance(node, dict):
        return node.get(key)
    if isinstance(node, list):
        try:
            i = int(key)
        except ValueError:
            return None
        return node[i] if 0 <= i < len(node) else None
    return None


def get_in(root: Any, parts: List[str]) -> Any:
    node = root
    for key in parts:
        node = _child(node, key)
        if node is None:
            return None
    return node


def set_in(root: Any, parts: List[str], value: Any) -> Any:
    """Write ``value`` at ``parts`` below ``root`` and return the new root.

    ``None`` deletes a mapping key. Missing intermediate levels are created as
    mappings; list levels must already exist.
    """
    if not parts:
        return value
    if root is None:
        if value is None:
            return None
        root = {}
    key, rest = parts[0], parts[1:]
    if isinstance(root, list):
        i = int(key)
        if not 0 <= i < len(root):
            raise IndexError(f"path index out of range: {key}")
        root[i] = set_in(root[i], rest, value)
        return root
    if not isinstance(root, dict):
        raise TypeError(f"cannot descend into {type(root).__name__} at {key}")
    child = set_in(root.get(key), rest, value)
    if child is None:
        root.pop(key, None)
    else:
        root[key] = child
    return root


def _related(a: List[str], b: List[str]) -> bool:
    n = min(len(a), len(b))
    return a[:n] == b[:n]


class InMemoryStore:
    """Process-local document tree with compare-and-set transactions.

    A transaction reads a copy of the value at its path, runs the body on it
    without holding the lock, and commits only if the stored value still
    equals what was read; otherwise the body runs again on the newer value.
    Writes to unrelated paths (two different cells) never conflict.

    Listeners run under the lock, so each one sees writes in commit order.
    """

    def __init__(self, max_attempts: Optional[int] = None) -> None:
        self._root: Dict[str, Any] = {}
        self._lock = threading.RLock()
        self._listeners: Dict[int, Tuple[List[str], Listener]] = {}
        self._next_listener = 0
        self.max_attempts = max_attempts
        self.retries = 0

    def get(self, path: str) -> Any:
        with self._lock:
            return deepcopy(get_in(self._root, split_path(path)))

    def set(self, path: str, value: Any) -> None:
        parts = split_path(path)
        with self._lock:
            self._root = set_in(self._root, parts, deepcopy(value)) or {}
            self._deliver(self._pending(parts))

    def update(self, path: str, values: Dict[str, Any]) -> None:
        parts = split_path(path)
        with self._lock:
            for key, value in values.items():
                self._root = set_in(self._root, parts + split_path(key), deepcopy(value)) or {}
            self._deliver(self._pending(parts))

    def transact(self, path: str, fn: TransactionFn) -> TransactionResult:
        parts = split_path(path)
        attempt = 0
        while True:
            attempt += 1
            if self.max_attempts is not None and attempt > self.max_attempts:
                raise TransactionAborted(f"too much contention on {path}")
            with self._lock:
                base = deepcopy(get_in(self._root, parts))
            new = fn(deepcopy(base))
            if new is None:
                return TransactionResult(False, base, base)
            with self._lock:
                if get_in(self._root, parts) != base:
                    self.retries += 1
                    continue
                if new != base:
                    self._root = set_in(self._root, parts, deepcopy(new)) or {}
                    self._deliver(self._pending(parts))
            return TransactionResult(True, base, deepcopy(new))

    def subscribe(self, path: str, callback: Listener) -> Callable[[], None]:
        parts = split_path(path)
        with self._lock:
            token = self._next_listener
            self._next_listener += 1
            self._listeners[token] = (parts, callback)
            callback(deepcopy(get_in(self._root, parts)))

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return unsubscribe

    def _pending(self, changed: List[str]) -> List[Tuple[Listener, Any]]:
        return [
            (cb, deepcopy(get_in(self._root, parts)))
            for parts, cb in list(self._listeners.values())
            if _related(parts, changed)
        ]

    def _deliver(self, pending: List[Tuple[Listener, Any]]) -> None:
        for cb, value in pending:
            cb(value)


def _encode_board(board: Optional[List[List[Dict[str, Any]]]]):
    # Firestore rejects arrays nested directly in arrays.
    if board is None:
        return None
    return {str(r): row for r, row in enumerate(board)}


def _decode_board(board: Any):
    if board is None or isinstance(board, list):
        return board
    return [board[k] for k in sorted(board, key=int)]


def _encode_room(room: Optional[Dict[str, Any]]):
    if room is None:
        return None
    doc = dict(room)
    if "board" in doc:
        doc["board"] = _encode_board(doc["board"])
    return doc


def _decode_room(doc: Optional[Dict[str, Any]]):
    if doc is None:
        return None
    room = dict(doc)
    if "board" in room:
        room["board"] = _decode_board(room["board"])
    return room


class FirestoreStore:
    """Firestore-backed document tree.

    ``rooms/{id}`` maps to a document in ``collection``; deeper path segments
    address fields inside it. Transactions always read and rewrite the whole
    room document, so Firestore serializes them per room.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        collection: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        if client is not None:
            self.client = client
        else:
            if firestore is None:
                raise RuntimeError("google-cloud-firestore not available")
            self.client = firestore.Client(project=os.environ.get("GOOGLE_CLOUD_PROJECT"))
        self.collection = collection or os.environ.get("ROOMS_COLLECTION", "monsterRooms")
        self.max_attempts = max_attempts or int(os.environ.get("TRANSACTION_MAX_ATTEMPTS", "25"))

    def _locate(self, path: str):
        parts = split_path(path)
        if len(parts) < 2 or parts[0] != "rooms":
            raise ValueError(f"unsupported_path: {path}")
        return self.client.collection(self.collection).document(parts[1]), parts[2:]

    def get(self, path: str) -> Any:
        ref, keys = self._locate(path)
        snap = ref.get()
        if not snap.exists:
            return None
        return get_in(_decode_room(snap.to_dict()), keys)

    def set(self, path: str, value: Any) -> None:
        if firestore is None:
            raise RuntimeError("google-cloud-firestore not available")
        ref, keys = self._locate(path)
        if not keys:
            if value is None:
                ref.delete()
            else:
                ref.set(_encode_room(value))
            return
        if keys[0] == "board" and len(keys) > 1:
            self.transact(path, lambda _current: value)
            return
        if keys == ["board"]:
            value = _encode_board(value)
        ref.update({self.client.field_path(*keys): firestore.DELETE_FIELD if value is None else value})

    def update(self, path: str, values: Dict[str, Any]) -> None:
        if firestore is None:
            raise RuntimeError("google-cloud-firestore not available")
        ref, keys = self._locate(path)
        fields: Dict[str, Any] = {}
        for key, value in values.items():
            full = keys + split_path(key)
            if full[0] == "board" and len(full) > 1:
                self.transact(f"{path}/{key}", lambda _current, v=value: v)
                continue
            if full == ["board"]:
                value = _encode_board(value)
            fields[self.client.field_path(*full)] = firestore.DELETE_FIELD if value is None else value
        if fields:
            ref.update(fields)

    def transact(self, path: str, fn: TransactionFn) -> TransactionResult:
        if firestore is None:
            raise RuntimeError("google-cloud-firestore not available")
        ref, keys = self._locate(path)
        seen: Dict[str, Any] = {}

        @firestore.transactional  # type: ignore
        def _tx(tx):
            snap = ref.get(transaction=tx)
            doc = _decode_room(snap.to_dict()) if snap.exists else None
            base = get_in(doc, keys) if keys else doc
            seen["before"] = deepcopy(base)
            new = fn(deepcopy(base))
            if new is None:
                return None
            if keys:
                doc = set_in(doc, keys, deepcopy(new))
            else:
                doc = new
            tx.set(ref, _encode_room(doc))
            return new

        after = _tx(self.client.transaction(max_attempts=self.max_attempts))
        return TransactionResult(after is not None, seen.get("before"), after)

    def subscribe(self, path: str, callback: Listener) -> Callable[[], None]:
        ref, keys = self._locate(path)

        def _on_snapshot(docs, changes, read_time):
            for snap in docs:
                doc = _decode_room(snap.to_dict()) if snap.exists else None
                callback(get_in(doc, keys) if keys else doc)

        watch = ref.on_snapshot(_on_snapshot)
        return watch.unsubscribe
