"""Image rebuild history database operations."""

import json
import time
from typing import Any, Dict, List


class HistoryMixin:
    """Mixin providing image history operations.

    Requires:
        - self.conn: sqlite3.Connection
    """

    def record_image_history(self, image_name: str, config: Dict[str, Any],
                             timestamp: int = None) -> int:
        """Record one image rebuild.

        Args:
            image_name: Image the system was switched to
            config: Desired configuration the image was built from
            timestamp: Unix time, defaults to now

        Returns:
            History entry ID
        """
        cursor = self.conn.execute("""
            INSERT INTO image_history (image_name, config, timestamp)
            VALUES (?, ?, ?)
        """, (image_name, json.dumps(config, sort_keys=True),
              int(time.time()) if timestamp is None else timestamp))
        self.conn.commit()
        return cursor.lastrowid

    def list_image_history(self, image_filter: str = "", limit: int = 0,
                           offset: int = 0) -> List[Dict]:
        """List image rebuilds, most recent first.

        Args:
            image_filter: Substring of the image name, empty for all
            limit: Max entries, <= 0 for all
            offset: Entries to skip (only with a limit)
        """
        sql = "SELECT id, image_name, config, timestamp FROM image_history"
        params: List[Any] = []
        if image_filter:
            sql += " WHERE instr(image_name, ?) > 0"
            params.append(image_filter)
        sql += " ORDER BY timestamp DESC, id DESC"
        if limit > 0:
            sql += " LIMIT ?"
            params.append(limit)
            if offset > 0:
                sql += " OFFSET ?"
                params.append(offset)

        history = []
        for row in self.conn.execute(sql, params):
            history.append({
                'id': row['id'],
                'imageName': row['image_name'],
                'config': json.loads(row['config']) if row['config'] else {},
                'date': time.strftime('%Y-%m-%dT%H:%M:%S', time.localtime(row['timestamp'])),
                'timestamp': row['timestamp'],
            })
        return history

    def count_image_history(self, image_filter: str = "") -> int:
        if image_filter:
            cursor = self.conn.execute(
                "SELECT COUNT(*) FROM image_history WHERE instr(image_name, ?) > 0",
                (image_filter,)
            )
        else:
            cursor = self.conn.execute("SELECT COUNT(*) FROM image_history")
        return cursor.fetchone()[0]
