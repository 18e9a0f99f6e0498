"""
Доменные перечисления (enum).

Используются во всей системе:
- виды задач и их очереди
- состояния задачи в очереди
- каналы доставки
- статусы CRM-сущностей, нужные агрегатору
"""

from __future__ import annotations

import enum


class JobKind(str, enum.Enum):
    """
    Вид фоновой задачи. Определяет очередь и процессор.
    """

    reminder = "reminder"
    nurture = "nurture"
    dunning = "dunning"
    snapshot = "snapshot"


class QueueName(str, enum.Enum):
    reminders = "reminders"
    nurture = "nurture"
    dunning = "dunning"
    snapshots = "snapshots"


# Жёсткое соответствие вид -> очередь (фиксируется на старте)
QUEUE_FOR_KIND: dict[JobKind, QueueName] = {
    JobKind.reminder: QueueName.reminders,
    JobKind.nurture: QueueName.nurture,
    JobKind.dunning: QueueName.dunning,
    JobKind.snapshot: QueueName.snapshots,
}


class JobState(str, enum.Enum):
    """
    Состояние задачи в очереди.
    """

    waiting = "waiting"
    delayed = "delayed"
    active = "active"
    completed = "completed"
    failed = "failed"


class Channel(str, enum.Enum):
    """
    Канал доставки сообщения.
    """

    sms = "sms"
    email = "email"


class ActivityChannel(str, enum.Enum):
    """
    Канал, записываемый в журнал активностей (none: до отправки не дошло).
    """

    sms = "sms"
    email = "email"
    none = "none"


class DealStage(str, enum.Enum):
    lead = "lead"
    qualified = "qualified"
    proposal = "proposal"
    won = "won"
    lost = "lost"


class AppointmentStatus(str, enum.Enum):
    scheduled = "scheduled"
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"
