import json
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import asyncpg

from ..models.db_models import (
    Attendance, AttendanceWithClass, AttendanceWithUser, AuditLog,
    ClassInfo, DeviceBinding, DeviceBindingWithUser, Schedule, SessionToken, User,
    UserCredentials,
)
from .schema import SCHEMA_SQL

logger = logging.getLogger(__name__)


async def init_connection(connection: asyncpg.Connection):
    """Havuzdaki her bağlantı için JSONB <-> dict dönüşümünü kaydeder."""
    await connection.set_type_codec(
        "jsonb",
        encoder=lambda value: json.dumps(value, default=str),
        decoder=json.loads,
        schema="pg_catalog",
    )


def affected_rows(status: str) -> int:
    """asyncpg durum metninden ('DELETE 3') etkilenen satır sayısını çıkarır."""
    try:
        return int(str(status).split()[-1])
    except (ValueError, IndexError):
        return 0


class AttendanceTransaction:
    """
    Operations that must run on one connection inside one transaction:
    locking the session token, the enrollment check, token consumption and
    the attendance upsert. Raising anywhere inside the block rolls all of it back.
    """

    def __init__(self, connection: asyncpg.Connection):
        self._connection = connection

    async def get_session_token_for_update(self, token_value: str) -> Optional[SessionToken]:
        # FOR UPDATE: aynı token'ı sunan eşzamanlı istek, ilki commit edene kadar bekler
        # ve ardından güncel `used` değerini görür.
        query = "SELECT * FROM session_tokens WHERE token = $1 FOR UPDATE;"
        record = await self._connection.fetchrow(query, token_value)
        return SessionToken(**record) if record else None

    async def is_enrolled(self, user_id: str, class_id: str) -> bool:
        query = "SELECT EXISTS (SELECT 1 FROM schedules WHERE user_id = $1 AND class_id = $2);"
        return bool(await self._connection.fetchval(query, user_id, class_id))

    async def consume_session_token(self, token_id: str) -> bool:
        """Flips used=false -> true. Returns False if another writer got there first."""
        query = "UPDATE session_tokens SET used = TRUE WHERE id = $1 AND used = FALSE;"
        status = await self._connection.execute(query, token_id)
        return affected_rows(status) == 1

    async def upsert_attendance(self, record: Attendance) -> Attendance:
        query = """
            INSERT INTO attendance (id, user_id, class_id, date, status, marked_by)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (user_id, class_id, date) DO UPDATE SET
                status = EXCLUDED.status,
                updated_at = now()
            RETURNING *;
        """
        row = await self._connection.fetchrow(
            query, record.id, record.user_id, record.class_id, record.date,
            record.status.value, record.marked_by,
        )
        return Attendance(**row)


class AsyncPostgresClient:
    """
    Tüm veritabanı operasyonlarını yöneten PostgreSQL istemcisi.
    """
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def init_schema(self):
        async with self._pool.acquire() as connection:
            await connection.execute(SCHEMA_SQL)
        logger.info("Veritabanı şeması hazır.")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AttendanceTransaction]:
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                yield AttendanceTransaction(connection)

    # ===== Users, classes, schedules =====

    async def add_users(self, users: List[UserCredentials]):
        """Yeni kullanıcıları ekler. Çakışma durumunda bir şey yapmaz."""
        if not users:
            return
        query = """
            INSERT INTO users (id, email, name, role, enrollment_no, password_hash)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (id) DO NOTHING;
        """
        user_data = [(u.id, u.email, u.name, u.role.value, u.enrollment_no, u.password_hash) for u in users]
        async with self._pool.acquire() as connection:
            await connection.executemany(query, user_data)

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        query = "SELECT id, email, name, role, enrollment_no FROM users WHERE id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, user_id)
            return User(**record) if record else None

    async def get_user_credentials(self, email: str) -> Optional[UserCredentials]:
        query = "SELECT id, email, name, role, enrollment_no, password_hash FROM users WHERE lower(email) = lower($1);"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, email)
            return UserCredentials(**record) if record else None

    async def add_classes(self, classes: List[ClassInfo]):
        if not classes:
            return
        query = """
            INSERT INTO classes (id, code, name, room, teacher_id)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (id) DO NOTHING;
        """
        async with self._pool.acquire() as connection:
            await connection.executemany(query, [(c.id, c.code, c.name, c.room, c.teacher_id) for c in classes])

    async def get_class_by_code(self, code: str) -> Optional[ClassInfo]:
        query = "SELECT * FROM classes WHERE code = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, code)
            return ClassInfo(**record) if record else None

    async def get_class_by_id(self, class_id: str) -> Optional[ClassInfo]:
        query = "SELECT * FROM classes WHERE id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, class_id)
            return ClassInfo(**record) if record else None

    async def add_schedules(self, schedules: List[Schedule]):
        if not schedules:
            return
        query = """
            INSERT INTO schedules (id, user_id, class_id) VALUES ($1, $2, $3)
            ON CONFLICT (user_id, class_id) DO NOTHING;
        """
        async with self._pool.acquire() as connection:
            await connection.executemany(query, [(s.id, s.user_id, s.class_id) for s in schedules])

    # ===== Device bindings =====

    async def get_device_binding(self, user_id: str) -> Optional[DeviceBinding]:
        query = "SELECT * FROM device_bindings WHERE user_id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, user_id)
            return DeviceBinding(**record) if record else None

    async def create_device_binding(self, binding: DeviceBinding) -> Optional[DeviceBinding]:
        """Inserts a binding. Returns None when the user already has one (unique user_id)."""
        query = """
            INSERT INTO device_bindings (id, user_id, device_hash, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (user_id) DO NOTHING
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(
                query, binding.id, binding.user_id, binding.device_hash, binding.created_at, binding.updated_at
            )
            return DeviceBinding(**record) if record else None

    async def delete_device_binding(self, user_id: str) -> int:
        query = "DELETE FROM device_bindings WHERE user_id = $1;"
        async with self._pool.acquire() as connection:
            return affected_rows(await connection.execute(query, user_id))

    async def list_device_bindings(self) -> List[DeviceBindingWithUser]:
        query = """
            SELECT b.*, u.id AS user_id_, u.email AS user_email, u.name AS user_name,
                   u.role AS user_role, u.enrollment_no AS user_enrollment_no
            FROM device_bindings b JOIN users u ON u.id = b.user_id
            ORDER BY b.created_at DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query)
        result = []
        for r in records:
            user = User(id=r["user_id_"], email=r["user_email"], name=r["user_name"],
                        role=r["user_role"], enrollment_no=r["user_enrollment_no"])
            result.append(DeviceBindingWithUser(
                id=r["id"], user_id=r["user_id"], device_hash=r["device_hash"],
                created_at=r["created_at"], updated_at=r["updated_at"], user=user,
            ))
        return result

    # ===== Session tokens =====

    async def add_session_token(self, token: SessionToken) -> SessionToken:
        query = """
            INSERT INTO session_tokens (id, class_id, token, expires_at, used)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING *;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, token.id, token.class_id, token.token, token.expires_at, token.used)
            return SessionToken(**record)

    async def purge_expired_session_tokens(self, now: datetime, class_id: Optional[str] = None) -> int:
        """Süresi dolmuş token'ları siler; class_id verilirse sadece o dersinkileri."""
        async with self._pool.acquire() as connection:
            if class_id is None:
                status = await connection.execute("DELETE FROM session_tokens WHERE expires_at < $1;", now)
            else:
                status = await connection.execute(
                    "DELETE FROM session_tokens WHERE class_id = $1 AND expires_at < $2;", class_id, now
                )
        return affected_rows(status)

    # ===== Attendance (read paths) =====

    async def get_attendance_for_user(self, user_id: str, on_date: Optional[date] = None) -> List[AttendanceWithClass]:
        query = """
            SELECT a.*, c.code AS class_code, c.name AS class_name
            FROM attendance a JOIN classes c ON c.id = a.class_id
            WHERE a.user_id = $1 AND ($2::date IS NULL OR a.date = $2)
            ORDER BY a.date DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, user_id, on_date)
            return [AttendanceWithClass(**r) for r in records]

    async def get_attendance_by_class(self, class_id: str) -> List[AttendanceWithUser]:
        query = """
            SELECT a.*, u.name AS user_name, u.email AS user_email, u.enrollment_no
            FROM attendance a JOIN users u ON u.id = a.user_id
            WHERE a.class_id = $1
            ORDER BY a.date DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, class_id)
            return [AttendanceWithUser(**r) for r in records]

    # ===== Audit logs =====

    async def add_audit_log(self, entry: AuditLog):
        query = """
            INSERT INTO audit_logs (user_id, action, ip_address, device_id, location, details, timestamp)
            VALUES ($1, $2, $3, $4, $5, $6, $7);
        """
        async with self._pool.acquire() as connection:
            await connection.execute(
                query, entry.user_id, entry.action, entry.ip_address, entry.device_id,
                entry.location, entry.details, entry.timestamp,
            )

    @staticmethod
    def _audit_where(filters: Dict[str, Any]) -> Tuple[str, list]:
        clauses, args = [], []

        def add(clause: str, value):
            args.append(value)
            clauses.append(clause.format(n=len(args)))

        if filters.get("user_id"):
            add("user_id = ${n}", filters["user_id"])
        if filters.get("action"):
            add("action = ${n}", filters["action"])
        if filters.get("start_date"):
            add("timestamp >= ${n}", filters["start_date"])
        if filters.get("end_date"):
            add("timestamp <= ${n}", filters["end_date"])
        if filters.get("ip_address"):
            add("ip_address ILIKE '%' || ${n} || '%'", filters["ip_address"])
        if filters.get("device_id"):
            add("device_id ILIKE '%' || ${n} || '%'", filters["device_id"])

        where = ("WHERE " + " AND ".join(clauses)) if clauses else ""
        return where, args

    async def get_audit_logs(self, filters: Dict[str, Any], limit: int, offset: int) -> Tuple[List[AuditLog], int]:
        where, args = self._audit_where(filters)
        n = len(args)
        query = f"SELECT * FROM audit_logs {where} ORDER BY timestamp DESC LIMIT ${n + 1} OFFSET ${n + 2};"
        count_query = f"SELECT count(*) FROM audit_logs {where};"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, *args, limit, offset)
            total = await connection.fetchval(count_query, *args)
        return [AuditLog(**r) for r in records], int(total)

    async def get_audit_stats(self, start: datetime, end: datetime, failure_actions: List[str]) -> Dict[str, Any]:
        async with self._pool.acquire() as connection:
            total_logs = await connection.fetchval("SELECT count(*) FROM audit_logs;")
            recent_logs = await connection.fetchval(
                "SELECT count(*) FROM audit_logs WHERE timestamp BETWEEN $1 AND $2;", start, end
            )
            action_rows = await connection.fetch(
                """
                SELECT action, count(*) AS count FROM audit_logs
                WHERE timestamp BETWEEN $1 AND $2
                GROUP BY action ORDER BY count DESC;
                """, start, end
            )
            unique_users = await connection.fetchval(
                "SELECT count(DISTINCT user_id) FROM audit_logs WHERE timestamp BETWEEN $1 AND $2;", start, end
            )
            ip_rows = await connection.fetch(
                """
                SELECT ip_address, count(*) AS count FROM audit_logs
                WHERE timestamp BETWEEN $1 AND $2 AND ip_address IS NOT NULL
                GROUP BY ip_address ORDER BY count DESC LIMIT 10;
                """, start, end
            )
            failed = await connection.fetchval(
                "SELECT count(*) FROM audit_logs WHERE timestamp BETWEEN $1 AND $2 AND action = ANY($3);",
                start, end, failure_actions
            )
        return {
            "total_logs": int(total_logs),
            "recent_logs": int(recent_logs),
            "unique_users": int(unique_users),
            "failed_attempts": int(failed),
            "action_counts": {r["action"]: int(r["count"]) for r in action_rows},
            "top_ips": [(r["ip_address"], int(r["count"])) for r in ip_rows],
        }

    async def get_audit_logs_for_export(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        query = """
            SELECT l.*, u.email AS user_email, u.name AS user_name, u.role AS user_role
            FROM audit_logs l LEFT JOIN users u ON u.id = l.user_id
            WHERE l.timestamp BETWEEN $1 AND $2
            ORDER BY l.timestamp DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, start, end)
            return [dict(r) for r in records]

    async def delete_audit_logs_before(self, cutoff: datetime) -> int:
        query = "DELETE FROM audit_logs WHERE timestamp < $1;"
        async with self._pool.acquire() as connection:
            return affected_rows(await connection.execute(query, cutoff))
