"""
Redis-бэкенд очередей.

Раскладка ключей (prefix = QUEUE_PREFIX, q = имя очереди):
- {prefix}:{q}:waiting     LIST  (LPUSH при постановке, RPOP при взятии -> FIFO)
- {prefix}:{q}:active      ZSET  (score = дедлайн аренды)
- {prefix}:{q}:delayed     ZSET  (score = время готовности)
- {prefix}:{q}:completed   LIST  (новые слева, хвост обрезается до keep)
- {prefix}:{q}:failed      LIST
- {prefix}:{q}:paused      STRING (наличие ключа = очередь на паузе)
- {prefix}:{q}:job:<id>    HASH  (data, attempts, state, token, last_error, result, finished_at)

Все переходы состояний выполняются Lua-скриптами (атомарно).
Завершение с чужим/устаревшим lease-токеном игнорируется.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from typing import Any

import redis

from clientflow_automation.common.ids import new_lease_token
from clientflow_automation.common.logging import get_project_logger
from clientflow_automation.contracts.jobs import JobEnvelope

from .backend import ClaimedJob, JobRecord, QueueCounts

log = get_project_logger()

_ADD = """
if redis.call('EXISTS', KEYS[1]) == 1 then
  return 0
end
local ready_at = tonumber(ARGV[3])
if ready_at > 0 then
  redis.call('HSET', KEYS[1], 'data', ARGV[2], 'attempts', 0, 'state', 'delayed')
  redis.call('ZADD', KEYS[3], ready_at, ARGV[1])
else
  redis.call('HSET', KEYS[1], 'data', ARGV[2], 'attempts', 0, 'state', 'waiting')
  redis.call('LPUSH', KEYS[2], ARGV[1])
end
return 1
"""

_CLAIM = """
if redis.call('EXISTS', KEYS[3]) == 1 then
  return false
end
while true do
  local id = redis.call('RPOP', KEYS[1])
  if not id then
    return false
  end
  local key = ARGV[1] .. id
  if redis.call('EXISTS', key) == 1 then
    local attempts = redis.call('HINCRBY', key, 'attempts', 1)
    redis.call('HSET', key, 'state', 'active', 'token', ARGV[3])
    redis.call('ZADD', KEYS[2], ARGV[2], id)
    return {id, redis.call('HGET', key, 'data'), attempts}
  end
end
"""

_SETTLE = """
if redis.call('HGET', KEYS[1], 'token') ~= ARGV[2] then
  return 0
end
redis.call('ZREM', KEYS[2], ARGV[1])
redis.call('HDEL', KEYS[1], 'token')
redis.call('HSET', KEYS[1], 'state', ARGV[3], ARGV[4], ARGV[5], 'finished_at', ARGV[6])
redis.call('LPUSH', KEYS[3], ARGV[1])
local keep = tonumber(ARGV[7])
while redis.call('LLEN', KEYS[3]) > keep do
  local old = redis.call('RPOP', KEYS[3])
  redis.call('DEL', ARGV[8] .. old)
end
return 1
"""

_RETRY = """
if redis.call('HGET', KEYS[1], 'token') ~= ARGV[2] then
  return 0
end
redis.call('ZREM', KEYS[2], ARGV[1])
redis.call('HDEL', KEYS[1], 'token')
redis.call('HSET', KEYS[1], 'state', 'delayed', 'last_error', ARGV[4])
redis.call('ZADD', KEYS[3], ARGV[3], ARGV[1])
return 1
"""

_EXTEND = """
if redis.call('HGET', KEYS[1], 'token') ~= ARGV[2] then
  return 0
end
if not redis.call('ZSCORE', KEYS[2], ARGV[1]) then
  return 0
end
redis.call('ZADD', KEYS[2], ARGV[3], ARGV[1])
return 1
"""

_PROMOTE = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, tonumber(ARGV[2]))
for _, id in ipairs(ids) do
  redis.call('ZREM', KEYS[1], id)
  redis.call('LPUSH', KEYS[2], id)
  redis.call('HSET', ARGV[3] .. id, 'state', 'waiting')
end
return #ids
"""

_RECLAIM = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, tonumber(ARGV[3]))
local out = {}
for _, id in ipairs(ids) do
  local key = ARGV[4] .. id
  local token = ARGV[5] .. ':' .. id
  redis.call('ZADD', KEYS[1], ARGV[2], id)
  redis.call('HSET', key, 'token', token)
  table.insert(out, id)
  table.insert(out, redis.call('HGET', key, 'data'))
  table.insert(out, redis.call('HGET', key, 'attempts'))
  table.insert(out, token)
end
return out
"""

_RELEASE_LOCK = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""


class RedisQueueBackend:
    def __init__(
        self,
        client: redis.Redis,
        *,
        prefix: str = "cf",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._r = client
        self._prefix = prefix
        self._clock = clock
        self._add = client.register_script(_ADD)
        self._claim = client.register_script(_CLAIM)
        self._settle = client.register_script(_SETTLE)
        self._retry = client.register_script(_RETRY)
        self._extend = client.register_script(_EXTEND)
        self._promote = client.register_script(_PROMOTE)
        self._reclaim = client.register_script(_RECLAIM)
        self._release = client.register_script(_RELEASE_LOCK)

    # ------------------------------------------------------------------
    # keys
    # ------------------------------------------------------------------
    def _key(self, queue: str, part: str) -> str:
        return f"{self._prefix}:{queue}:{part}"

    def _job_prefix(self, queue: str) -> str:
        return f"{self._prefix}:{queue}:job:"

    def _job_key(self, queue: str, job_id: str) -> str:
        return self._job_prefix(queue) + job_id

    @staticmethod
    def _envelope(data: str, attempts: Any) -> JobEnvelope:
        env = JobEnvelope.from_json(data)
        return env.model_copy(update={"attempt_count": int(attempts or 0)})

    # ------------------------------------------------------------------
    # producer
    # ------------------------------------------------------------------
    def add(self, envelope: JobEnvelope, *, delay_sec: float = 0.0) -> bool:
        q = envelope.queue
        ready_at = self._clock() + delay_sec if delay_sec > 0 else 0
        res = self._add(
            keys=[
                self._job_key(q, envelope.job_id),
                self._key(q, "waiting"),
                self._key(q, "delayed"),
            ],
            args=[envelope.job_id, envelope.to_json(), ready_at],
        )
        return bool(int(res))

    # ------------------------------------------------------------------
    # worker
    # ------------------------------------------------------------------
    def claim(self, queue: str, *, lease_sec: float) -> ClaimedJob | None:
        token = new_lease_token()
        deadline = self._clock() + lease_sec
        res = self._claim(
            keys=[self._key(queue, "waiting"), self._key(queue, "active"), self._key(queue, "paused")],
            args=[self._job_prefix(queue), deadline, token],
        )
        if not res:
            return None
        _job_id, data, attempts = res
        return ClaimedJob(
            envelope=self._envelope(data, attempts), lease_token=token, lease_expires_at=deadline
        )

    def _settle_to(
        self, job: ClaimedJob, *, state: str, field: str, value: str, keep: int
    ) -> bool:
        q = job.envelope.queue
        res = self._settle(
            keys=[self._job_key(q, job.job_id), self._key(q, "active"), self._key(q, state)],
            args=[
                job.job_id,
                job.lease_token,
                state,
                field,
                value,
                self._clock(),
                max(0, keep),
                self._job_prefix(q),
            ],
        )
        return bool(int(res))

    def complete(self, job: ClaimedJob, *, result: dict[str, Any] | None, keep: int) -> bool:
        return self._settle_to(
            job,
            state="completed",
            field="result",
            value=json.dumps(result or {}, ensure_ascii=False, default=str),
            keep=keep,
        )

    def fail(self, job: ClaimedJob, *, error: str, keep: int) -> bool:
        return self._settle_to(job, state="failed", field="last_error", value=error, keep=keep)

    def retry_later(self, job: ClaimedJob, *, delay_sec: float, error: str) -> bool:
        q = job.envelope.queue
        res = self._retry(
            keys=[self._job_key(q, job.job_id), self._key(q, "active"), self._key(q, "delayed")],
            args=[job.job_id, job.lease_token, self._clock() + max(0.0, delay_sec), error],
        )
        return bool(int(res))

    def extend(self, job: ClaimedJob, *, lease_sec: float) -> bool:
        q = job.envelope.queue
        deadline = self._clock() + lease_sec
        res = self._extend(
            keys=[self._job_key(q, job.job_id), self._key(q, "active")],
            args=[job.job_id, job.lease_token, deadline],
        )
        if int(res):
            job.lease_expires_at = deadline
            return True
        return False

    def promote_delayed(self, queue: str, *, limit: int = 100) -> int:
        res = self._promote(
            keys=[self._key(queue, "delayed"), self._key(queue, "waiting")],
            args=[self._clock(), limit, self._job_prefix(queue)],
        )
        return int(res or 0)

    def reclaim_stalled(self, queue: str, *, lease_sec: float, limit: int = 100) -> list[ClaimedJob]:
        now = self._clock()
        deadline = now + lease_sec
        res = self._reclaim(
            keys=[self._key(queue, "active")],
            args=[now, deadline, limit, self._job_prefix(queue), new_lease_token()],
        )
        out: list[ClaimedJob] = []
        items = list(res or [])
        for i in range(0, len(items), 4):
            _job_id, data, attempts, token = items[i : i + 4]
            if not data:
                continue
            out.append(
                ClaimedJob(
                    envelope=self._envelope(data, attempts),
                    lease_token=token,
                    lease_expires_at=deadline,
                )
            )
        return out

    # ------------------------------------------------------------------
    # inspection / admin
    # ------------------------------------------------------------------
    def counts(self, queue: str) -> QueueCounts:
        pipe = self._r.pipeline()
        pipe.llen(self._key(queue, "waiting"))
        pipe.zcard(self._key(queue, "active"))
        pipe.llen(self._key(queue, "completed"))
        pipe.llen(self._key(queue, "failed"))
        pipe.zcard(self._key(queue, "delayed"))
        pipe.exists(self._key(queue, "paused"))
        waiting, active, completed, failed, delayed, paused = pipe.execute()
        return QueueCounts(
            waiting=int(waiting),
            active=int(active),
            completed=int(completed),
            failed=int(failed),
            delayed=int(delayed),
            paused=bool(paused),
        )

    def _record(self, raw: dict[str, str]) -> JobRecord | None:
        if not raw or not raw.get("data"):
            return None
        result: dict[str, Any] = {}
        if raw.get("result"):
            try:
                result = json.loads(raw["result"])
            except ValueError:
                log.warning("queue_job_result_unreadable")
        finished = raw.get("finished_at")
        return JobRecord(
            envelope=self._envelope(raw["data"], raw.get("attempts")),
            state=raw.get("state") or "unknown",
            last_error=raw.get("last_error"),
            result=result,
            finished_at=float(finished) if finished else None,
        )

    def get_job(self, queue: str, job_id: str) -> JobRecord | None:
        return self._record(self._r.hgetall(self._job_key(queue, job_id)))

    def list_failed(self, queue: str, *, limit: int = 50) -> list[JobRecord]:
        if limit <= 0:
            return []
        ids = self._r.lrange(self._key(queue, "failed"), 0, limit - 1)
        pipe = self._r.pipeline()
        for job_id in ids:
            pipe.hgetall(self._job_key(queue, job_id))
        out: list[JobRecord] = []
        for raw in pipe.execute():
            rec = self._record(raw)
            if rec is not None:
                out.append(rec)
        return out

    def pause(self, queue: str) -> None:
        self._r.set(self._key(queue, "paused"), "1")

    def resume(self, queue: str) -> None:
        self._r.delete(self._key(queue, "paused"))

    def is_paused(self, queue: str) -> bool:
        return bool(self._r.exists(self._key(queue, "paused")))

    def clear(self, queue: str) -> None:
        """Удаляет всё, кроме активных задач (их дозавершат воркеры)."""
        waiting = self._key(queue, "waiting")
        delayed = self._key(queue, "delayed")
        completed = self._key(queue, "completed")
        failed = self._key(queue, "failed")
        ids = [
            *self._r.lrange(waiting, 0, -1),
            *self._r.zrange(delayed, 0, -1),
            *self._r.lrange(completed, 0, -1),
            *self._r.lrange(failed, 0, -1),
        ]
        pipe = self._r.pipeline()
        for job_id in ids:
            pipe.delete(self._job_key(queue, job_id))
        pipe.delete(waiting, delayed, completed, failed)
        pipe.execute()

    # ------------------------------------------------------------------
    # locks
    # ------------------------------------------------------------------
    def acquire_lock(self, key: str, *, ttl_sec: int) -> str | None:
        token = new_lease_token()
        ok = self._r.set(f"{self._prefix}:lock:{key}", token, nx=True, ex=max(1, int(ttl_sec)))
        return token if ok else None

    def release_lock(self, key: str, token: str) -> None:
        self._release(keys=[f"{self._prefix}:lock:{key}"], args=[token])
