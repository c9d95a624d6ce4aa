# ui/pages/today.py
from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Optional

import flet as ft

from core.errors import FocusBlocksError
from core.settings import SESSION_POLICY, UI
from datetime_utils import ensure_utc, local_day_bounds, local_tz, utc_now
from models.focus_session import FocusSession, SessionStatus
from models.task import Task


STATUS_COLORS = {
    SessionStatus.ACTIVE: UI.theme.active,
    SessionStatus.MISSED: UI.theme.missed,
    SessionStatus.DISCARDED: UI.theme.discarded,
    SessionStatus.COMPLETED: UI.theme.completed,
    SessionStatus.SCHEDULED: UI.theme.scheduled,
}

STATUS_LABELS = {
    SessionStatus.ACTIVE: "идёт",
    SessionStatus.MISSED: "пропущен",
    SessionStatus.DISCARDED: "отменён",
    SessionStatus.COMPLETED: "выполнен",
    SessionStatus.SCHEDULED: "запланирован",
}


def _fmt_clock(value: datetime) -> str:
    return value.astimezone(local_tz()).strftime("%H:%M")


def _fmt_elapsed(seconds: int) -> str:
    h, rest = divmod(max(0, seconds), 3600)
    m, s = divmod(rest, 60)
    return f"{h:d}:{m:02d}:{s:02d}"


class TodayPage:
    LIST_SECTION_HEIGHT = UI.list_section_height

    def __init__(self, app):
        self.app = app
        self.controller = app.controller
        self.repo = app.repo
        self.day: date = date.today()

        # ---------- Быстрый ввод ----------
        self.title_tf = ft.TextField(
            label="Название задачи",
            hint_text="Например: Написать отчёт",
            expand=True,
            prefix=ft.Icon(ft.Icons.TASK_ALT),
        )
        self.estimate_tf = ft.TextField(
            label="Оценка, мин",
            value="30",
            width=140,
            prefix=ft.Icon(ft.Icons.TIMER),
        )
        self.add_btn = ft.FilledButton("Добавить", icon=ft.Icons.ADD, on_click=self.on_add_task)

        # ---------- Планирование блока ----------
        self.task_dd = ft.Dropdown(label="Задача", width=260)
        self.block_time_tf = ft.TextField(label="Начало", hint_text="чч:мм", width=120)
        self.block_dur_tf = ft.TextField(label="Длительность, мин", value="60", width=160)
        self.block_btn = ft.OutlinedButton(
            "Запланировать", icon=ft.Icons.EVENT, on_click=self.on_add_block
        )

        self.timer_text = ft.Text("Нет активной сессии", size=20, weight=ft.FontWeight.W_600)
        self.sync_text = ft.Text("", color=UI.theme.text_subtle)

        header = ft.Row(
            [
                ft.Text("Сегодня", size=24, weight=ft.FontWeight.BOLD),
                ft.Container(expand=True),
                ft.OutlinedButton("Начать день", icon=ft.Icons.WB_SUNNY, on_click=self.on_start_day),
                ft.IconButton(icon=ft.Icons.SYNC, tooltip="Синхронизировать", on_click=self.on_sync_now),
            ],
            vertical_alignment=ft.CrossAxisAlignment.CENTER,
        )

        quick_add = ft.Card(
            content=ft.Container(
                padding=16,
                content=ft.Column(
                    [
                        ft.Row([self.title_tf, self.estimate_tf, self.add_btn],
                               vertical_alignment=ft.CrossAxisAlignment.END),
                        ft.Row([self.task_dd, self.block_time_tf, self.block_dur_tf, self.block_btn],
                               vertical_alignment=ft.CrossAxisAlignment.END),
                    ],
                    spacing=12,
                ),
            )
        )

        self.task_list = ft.ListView(expand=True, spacing=10)
        tasks_card = ft.Card(
            content=ft.Container(
                padding=12,
                content=ft.Column(
                    [
                        ft.Row([self.timer_text, ft.Container(expand=True), self.sync_text]),
                        ft.Container(content=self.task_list, height=self.LIST_SECTION_HEIGHT),
                    ],
                    spacing=10,
                ),
            )
        )

        self.view = ft.Container(
            content=ft.Column([header, quick_add, tasks_card], spacing=14, expand=True),
            expand=True,
            padding=20,
        )

    # --- вызов из меню ---
    def activate_from_menu(self):
        self.day = date.today()
        self.load()

    def load(self):
        self.refresh_tasks()
        self.refresh_timer()

    # ---------- Утилиты ----------
    def _toast(self, text: str):
        self.app.toast(text)

    def _parse_minutes(self, s: str) -> Optional[int]:
        try:
            value = int((s or "").strip())
        except ValueError:
            return None
        return value if value > 0 else None

    def _parse_block_start(self, s: str) -> Optional[datetime]:
        m = re.match(r"^\s*(\d{1,2}):(\d{2})\s*$", s or "")
        if not m:
            return None
        h, minute = int(m.group(1)), int(m.group(2))
        if not (0 <= h <= 23 and 0 <= minute <= 59):
            return None
        return datetime(self.day.year, self.day.month, self.day.day, h, minute, tzinfo=local_tz())

    def _run(self, action, success: Optional[str] = None):
        try:
            result = action()
        except (FocusBlocksError, ValueError) as exc:
            self._toast(f"Ошибка: {exc}")
            return None
        if success:
            self._toast(success)
        self.load()
        return result

    # ---------- Отрисовка ----------
    def refresh_timer(self):
        record = self.controller.active_session()
        if record is None:
            self.timer_text.value = "Нет активной сессии"
        else:
            task = self.repo.get_task(record.task_id)
            title = task.title if task else "?"
            self.timer_text.value = f"▶ {title}: {_fmt_elapsed(record.work_seconds())}"
        status = self.app.engine.last_report
        self.sync_text.value = status.summary() if status else ""
        self.app.page.update()

    def refresh_tasks(self):
        tasks = self.repo.tasks_for_day(self.day)
        self.task_dd.options = [ft.dropdown.Option(str(t.id), t.title) for t in tasks]
        start, end = local_day_bounds(self.day)
        by_task: dict[int, list[FocusSession]] = {}
        for record in self.repo.focus_sessions_between(start, end):
            by_task.setdefault(record.task_id, []).append(record)
        now = utc_now()
        self.task_list.controls = [self._task_tile(t, by_task.get(t.id, []), now) for t in tasks]
        if not tasks:
            self.task_list.controls = [ft.Text("Задач на сегодня нет", color=UI.theme.text_subtle)]
        self.app.page.update()

    def _task_tile(self, task: Task, sessions: list[FocusSession], now: datetime) -> ft.Control:
        active = self.controller.active_session()
        running = active is not None and active.task_id == task.id
        remaining = self.controller.remaining_minutes(task, now)

        play = ft.IconButton(
            icon=ft.Icons.STOP_CIRCLE if running else ft.Icons.PLAY_CIRCLE,
            tooltip="Стоп" if running else "Старт",
            on_click=(lambda e, s=active: self.on_stop(s)) if running
            else (lambda e, t=task: self.on_start(t)),
            disabled=task.is_complete,
        )
        done = ft.Checkbox(
            value=task.is_complete,
            on_change=lambda e, t=task: self.on_toggle_complete(t, e.control.value),
        )
        delete = ft.IconButton(
            icon=ft.Icons.DELETE_OUTLINE,
            tooltip="Удалить задачу",
            on_click=lambda e, t=task: self._run(lambda: self.controller.delete_task(t.id), "Удалено"),
        )

        rows = [self._session_row(s, now) for s in sorted(sessions, key=lambda s: s.planned_start)]
        return ft.Container(
            padding=10,
            border_radius=8,
            bgcolor=UI.theme.surface_bg,
            content=ft.Column(
                [
                    ft.Row(
                        [
                            done,
                            play,
                            ft.Text(task.title, weight=ft.FontWeight.W_600, expand=True),
                            ft.Text(f"осталось {remaining} из {task.estimated_minutes} мин",
                                    color=UI.theme.text_subtle),
                            delete,
                        ]
                    ),
                    *rows,
                ],
                spacing=4,
            ),
        )

    def _session_row(self, record: FocusSession, now: datetime) -> ft.Control:
        status = record.display_status(now)
        start, end = record.display_span(now, SESSION_POLICY.merge_window)
        actions: list[ft.Control] = []
        if status == SessionStatus.ACTIVE and now > ensure_utc(record.planned_end) and not record.was_manual_continue:
            actions.append(ft.TextButton("Продолжить", on_click=lambda e, r=record: self.on_continue(r)))
        if status == SessionStatus.MISSED:
            actions.append(ft.TextButton("Перенести на сейчас", on_click=lambda e, r=record: self.on_reschedule(r)))
            actions.append(ft.TextButton("Отменить", on_click=lambda e, r=record: self._run(
                lambda: self.controller.discard_missed(r.id))))
        if status == SessionStatus.SCHEDULED and not record.has_synced_to_calendar:
            actions.append(ft.IconButton(
                icon=ft.Icons.EVENT_AVAILABLE, tooltip="В календарь",
                on_click=lambda e, r=record: self._run(lambda: self.controller.publish_session(r.id)),
            ))
        if status != SessionStatus.ACTIVE:
            actions.append(ft.IconButton(
                icon=ft.Icons.CLOSE, tooltip="Удалить блок",
                on_click=lambda e, r=record: self._run(lambda: self.controller.remove_session(r.id)),
            ))
        linked = ft.Icon(ft.Icons.LINK, size=14) if record.has_calendar_link else ft.Container(width=14)
        return ft.Row(
            [
                ft.Container(width=10, height=10, border_radius=5, bgcolor=STATUS_COLORS[status]),
                ft.Text(f"{_fmt_clock(start)}–{_fmt_clock(end)}"),
                ft.Text(STATUS_LABELS[status], color=UI.theme.text_subtle),
                linked,
                ft.Container(expand=True),
                *actions,
            ],
            spacing=8,
        )

    # ---------- Действия ----------
    def on_add_task(self, _):
        title = (self.title_tf.value or "").strip()
        if not title:
            return self._toast("Введите название задачи")
        minutes = self._parse_minutes(self.estimate_tf.value)
        if minutes is None:
            return self._toast("Оценка должна быть > 0")
        self.repo.add_task(title, estimated_minutes=minutes, scheduled_date=self.day)
        self.title_tf.value = ""
        self.load()

    def on_add_block(self, _):
        if not self.task_dd.value:
            return self._toast("Выберите задачу")
        start = self._parse_block_start(self.block_time_tf.value)
        if start is None:
            return self._toast("Время в формате чч:мм")
        minutes = self._parse_minutes(self.block_dur_tf.value)
        if minutes is None:
            return self._toast("Длительность должна быть > 0")
        self._run(
            lambda: self.controller.add_session(
                int(self.task_dd.value), start, start + timedelta(minutes=minutes)
            ),
            "Блок запланирован",
        )

    def on_start(self, task: Task):
        result = self._run(lambda: self.controller.start(task.id))
        if result is not None and result.resumed:
            self._toast("Сессия продолжена")

    def on_stop(self, record: Optional[FocusSession]):
        if record is None:
            return
        result = self._run(lambda: self.controller.stop(record.id))
        if result is not None and result.outcome.value == "discarded":
            self._toast("Слишком короткая сессия, не сохранена")

    def on_continue(self, record: FocusSession):
        self._run(lambda: self.controller.continue_session(record.id))

    def on_reschedule(self, record: FocusSession):
        self._run(lambda: self.controller.reschedule_missed(record.id, utc_now()), "Блок перенесён")

    def on_toggle_complete(self, task: Task, value: bool):
        if value:
            self._run(lambda: self.controller.complete_task(task.id))
        else:
            self._run(lambda: self.controller.uncomplete_task(task.id))

    def on_start_day(self, _):
        count = self._run(lambda: self.controller.publish_day(self.day))
        if count is not None:
            self._toast(f"В календарь отправлено блоков: {count}")

    def on_sync_now(self, _):
        report = self.app.sync_now()
        self._toast(report.summary())
