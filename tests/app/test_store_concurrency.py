from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor

from postback_tracker.app.models import AttributionRecord
from postback_tracker.app.persistence import JsonFilePersistence
from postback_tracker.app.store import AttributionStore


def test_concurrent_puts_do_not_lose_updates(tmp_path) -> None:
    path = tmp_path / "subid_map.json"
    store = AttributionStore(JsonFilePersistence(str(path)))
    read_errors: list[Exception] = []

    def writer(index: int) -> None:
        store.put(str(index), AttributionRecord(visitor_id=f"click_{index}", network="prop"))

    def reader() -> None:
        for _ in range(300):
            try:
                store.lookup("1")
                store.count()
            except Exception as exc:  # pragma: no cover - regression trap
                read_errors.append(exc)

    with ThreadPoolExecutor(max_workers=10) as executor:
        futures = [executor.submit(writer, i) for i in range(200)]
        futures.extend(executor.submit(reader) for _ in range(4))
        for future in futures:
            future.result()

    assert not read_errors
    assert store.count() == 200
    persisted = json.loads(path.read_text(encoding="utf-8"))
    assert len(persisted) == 200


def test_concurrent_puts_respect_ceiling() -> None:
    store = AttributionStore(max_entries=50)

    with ThreadPoolExecutor(max_workers=8) as executor:
        list(
            executor.map(
                lambda index: store.put(str(index), AttributionRecord(visitor_id=f"v{index}")),
                range(300),
            )
        )

    assert store.count() == 50
