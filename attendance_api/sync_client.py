import logging

import requests

from .config import Config
from .errors import ExternalServiceError
from .local_store import SqliteStore
from .sync import SyncService

logger = logging.getLogger(__name__)

STUDENT_KEYS = ("roll_number",)
ATTENDANCE_KEYS = ("roll_number", "date")


def _as_changes(collection, rows, key_fields):
    changes = []
    for row in rows:
        key = {k: row.get(k) for k in key_fields}
        changes.append({"collection": collection, "op": "upsert", "key": key, "data": row})
    return changes


class SyncClient:
    """Pushes an offline node's outbox to the central server and pulls back what changed.

    Pulled rows are applied without being queued again. Outbox items the
    server applied or skipped are cleared; failed items stay queued for the
    next run.
    """

    def __init__(self, store, server_url, token=None, timeout=30, descriptor_dimension=128):
        self.store = store
        self.server_url = server_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.local = SyncService(store, descriptor_dimension)

    def _post(self, payload):
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            response = requests.post(
                f"{self.server_url}/sync", json=payload, headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.error(f"Sync request failed: {e}")
            raise ExternalServiceError(f"Sync request failed: {e}")

    def run(self):
        pending = self.store.pending_changes()
        marker = self.store.get_sync_marker()
        logger.info(f"Pushing {len(pending)} local changes (last sync: {marker})")

        payload = {
            "changes": [{k: c[k] for k in ("collection", "op", "key", "data")} for c in pending],
            "lastSyncMarker": marker,
        }
        body = self._post(payload)

        done = [
            pending[r["index"]]["id"]
            for r in body.get("results", [])
            if r.get("result") in ("applied", "skipped")
        ]
        self.store.clear_changes(done)

        remote = body.get("changes") or {}
        pulled = (
            _as_changes("students", remote.get("students") or [], STUDENT_KEYS)
            + _as_changes("attendance", remote.get("attendance") or [], ATTENDANCE_KEYS)
        )
        with self.store.untracked():
            applied = self.local.apply(pulled)

        self.store.set_sync_marker(body["marker"])
        summary = {
            "pushed": len(pending),
            "cleared": len(done),
            "pulled": len(pulled),
            "pull_failed": sum(1 for r in applied if r["result"] == "failed"),
            "marker": body["marker"],
        }
        logger.info(f"Sync complete: {summary}")
        return summary


def main():
    logging.basicConfig(level=logging.INFO, format='[%(asctime)s] %(levelname)s in %(module)s: %(message)s')
    if not Config.SYNC_SERVER_URL:
        raise SystemExit("SYNC_SERVER_URL is not set")
    store = SqliteStore(Config.SQLITE_PATH, track_changes=True)
    try:
        client = SyncClient(
            store,
            Config.SYNC_SERVER_URL,
            token=Config.SYNC_TOKEN,
            descriptor_dimension=Config.DESCRIPTOR_DIMENSION,
        )
        client.run()
    finally:
        store.close()


if __name__ == "__main__":
    main()
