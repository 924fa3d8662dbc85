"""Set-membership helpers over SQL join tables.

Two shapes recur across the domain:

* ``MembershipSet``: a member belongs to a keyed set at most once
  (event attendance, feedback upvotes). ``add`` reports whether the member
  was newly added and ``toggle`` flips membership.
* ``ExclusiveChoice``: within one scope a member holds at most one choice
  across all buckets (poll votes). ``choose`` retracts any prior choice
  before recording the new one.

Table and column names are fixed by the callers, never user input.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from .db import Connection


@dataclass(frozen=True, slots=True)
class MembershipSet:
    table: str
    key_column: str
    member_column: str = "user_id"
    stamp_column: str | None = None

    def contains(self, conn: Connection, key: str, member: str) -> bool:
        row = conn.execute(
            f"SELECT 1 FROM {self.table} WHERE {self.key_column} = ? AND {self.member_column} = ?",
            (key, member),
        ).fetchone()
        return row is not None

    def add(self, conn: Connection, key: str, member: str, stamp: float | None = None) -> bool:
        """Add `member`; returns False when it was already present."""
        if self.stamp_column:
            cursor = conn.execute(
                f"INSERT OR IGNORE INTO {self.table} "
                f"({self.key_column}, {self.member_column}, {self.stamp_column}) VALUES (?, ?, ?)",
                (key, member, stamp),
            )
        else:
            cursor = conn.execute(
                f"INSERT OR IGNORE INTO {self.table} ({self.key_column}, {self.member_column}) VALUES (?, ?)",
                (key, member),
            )
        return cursor.rowcount == 1

    def remove(self, conn: Connection, key: str, member: str) -> bool:
        """Remove `member`; returns False when it was absent."""
        cursor = conn.execute(
            f"DELETE FROM {self.table} WHERE {self.key_column} = ? AND {self.member_column} = ?",
            (key, member),
        )
        return cursor.rowcount > 0

    def toggle(self, conn: Connection, key: str, member: str, stamp: float | None = None) -> bool:
        """Flip membership and return whether `member` is now in the set."""
        if self.remove(conn, key, member):
            return False
        self.add(conn, key, member, stamp)
        return True

    def members(self, conn: Connection, key: str) -> List[str]:
        order = self.stamp_column or "rowid"
        rows = conn.execute(
            f"SELECT {self.member_column} FROM {self.table} WHERE {self.key_column} = ? ORDER BY {order}, rowid",
            (key,),
        ).fetchall()
        return [row[0] for row in rows]


@dataclass(frozen=True, slots=True)
class ExclusiveChoice:
    table: str
    scope_column: str
    choice_column: str
    member_column: str = "user_id"
    stamp_column: str | None = None

    def choice_of(self, conn: Connection, scope: str, member: str) -> Optional[str]:
        row = conn.execute(
            f"SELECT {self.choice_column} FROM {self.table} "
            f"WHERE {self.scope_column} = ? AND {self.member_column} = ?",
            (scope, member),
        ).fetchone()
        return row[0] if row else None

    def choose(
        self,
        conn: Connection,
        scope: str,
        choice: str,
        member: str,
        stamp: float | None = None,
    ) -> Optional[str]:
        """Move `member` to `choice` within `scope`; returns the retracted choice."""
        previous = self.choice_of(conn, scope, member)
        conn.execute(
            f"DELETE FROM {self.table} WHERE {self.scope_column} = ? AND {self.member_column} = ?",
            (scope, member),
        )
        columns = [self.scope_column, self.choice_column, self.member_column]
        values: list = [scope, choice, member]
        if self.stamp_column:
            columns.append(self.stamp_column)
            values.append(stamp)
        placeholders = ", ".join("?" for _ in columns)
        conn.execute(
            f"INSERT INTO {self.table} ({', '.join(columns)}) VALUES ({placeholders})",
            values,
        )
        return previous

    def retract(self, conn: Connection, scope: str, member: str) -> bool:
        cursor = conn.execute(
            f"DELETE FROM {self.table} WHERE {self.scope_column} = ? AND {self.member_column} = ?",
            (scope, member),
        )
        return cursor.rowcount > 0


__all__ = ["MembershipSet", "ExclusiveChoice"]
