# ui/app_shell.py
from __future__ import annotations

import asyncio
from typing import Optional

import flet as ft

from core.log import get_logger, read_log_tail
from core.settings import GOOGLE_SYNC, UI

from .pages.today import TodayPage
from .pages.settings import SettingsPage

from services import events as ev
from services.auto_end_monitor import AutoEndMonitor
from services.connectivity import ConnectivityMonitor
from services.cursor_store import SyncCursorStore
from services.events import LifecycleEvents
from services.google_auth import GoogleAuth
from services.google_calendar import GoogleCalendarGateway
from services.session_controller import SessionController
from services.sync_engine import SyncEngine
from services.sync_queue import OutboundSyncQueue
from services.sync_report import SyncReport
from storage.repository import Repository


class AppShell:
    def __init__(self, page: ft.Page):
        self.page = page
        self.logger = get_logger("ui")

        self.page.title = UI.app_title
        self.page.horizontal_alignment = ft.CrossAxisAlignment.STRETCH
        self.page.vertical_alignment = ft.MainAxisAlignment.START

        # --- сервисы (до создания страниц) ---
        self.repo = Repository()
        self.auth = GoogleAuth()
        self.gateway = GoogleCalendarGateway(self.auth, calendar_id=GOOGLE_SYNC.calendar_id)
        self.connectivity = ConnectivityMonitor()
        self.cursor_store = SyncCursorStore()
        self.events = LifecycleEvents()
        self.queue = OutboundSyncQueue(
            self.repo,
            self.gateway,
            connectivity=self.connectivity,
            cursor_store=self.cursor_store,
        )
        self.controller = SessionController(self.repo, self.queue, self.events)
        self.monitor = AutoEndMonitor(self.controller)
        self.engine = SyncEngine(
            self.repo,
            self.gateway,
            self.queue,
            self.cursor_store,
            self.events,
            connectivity=self.connectivity,
        )
        self.sync_interval_min: Optional[int] = GOOGLE_SYNC.background_interval_min

        for name in (ev.SESSION_START, ev.SESSION_STOP, ev.SESSION_REMOVED):
            self.events.subscribe(name, self._on_session_changed)
        self.events.subscribe(ev.AUTO_END, self._on_auto_end)
        self.events.subscribe(ev.REACHED_PLANNED_END, self._on_reached_end)

        # --- страницы ---
        self._today = TodayPage(self)
        self._settings = SettingsPage(self)

        self.content = ft.Container(expand=True)
        self.nav = ft.NavigationRail(
            selected_index=0,
            label_type=ft.NavigationRailLabelType.ALL,
            min_width=90,
            group_alignment=-0.9,
            on_change=self.on_nav_change,
            destinations=[
                ft.NavigationRailDestination(
                    icon=ft.Icons.TIMER_OUTLINED,
                    selected_icon=ft.Icons.TIMER,
                    label="Сегодня",
                ),
                ft.NavigationRailDestination(
                    icon=ft.Icons.SETTINGS_OUTLINED,
                    selected_icon=ft.Icons.SETTINGS,
                    label="Настройки",
                ),
            ],
        )
        self.root = ft.Row(
            controls=[
                ft.Container(self.nav, width=88, bgcolor=UI.theme.surface_bg),
                ft.VerticalDivider(width=1),
                self.content,
            ],
            expand=True,
            spacing=0,
        )

        self._monitor_stop = asyncio.Event()
        self._monitor_task: asyncio.Task | None = None
        self._sync_task: asyncio.Task | None = None
        self._clock_task: asyncio.Task | None = None
        self._connectivity_task: asyncio.Task | None = None

    # ---------- уведомления ----------
    def toast(self, text: str) -> None:
        self.page.snack_bar = ft.SnackBar(ft.Text(text))
        self.page.snack_bar.open = True
        self.page.update()

    def _on_session_changed(self, task, session) -> None:
        self._today.load()

    def _on_auto_end(self, task, session) -> None:
        title = task.title if task else "задача"
        self.toast(f"Время блока «{title}» истекло, таймер остановлен")

    def _on_reached_end(self, task, session) -> None:
        title = task.title if task else "задача"
        self.toast(f"Запланированное время «{title}» закончилось. Продолжить?")
        self._today.load()

    # ---------- фоновые циклы ----------
    async def _clock_loop(self):
        # перерисовка таймера активной сессии
        while True:
            await asyncio.sleep(1)
            if self.controller.active_session_id is not None:
                self._today.refresh_timer()

    async def _sync_loop(self):
        while True:
            interval = self.sync_interval_min
            if not interval:
                await asyncio.sleep(60)
                continue
            await asyncio.sleep(interval * 60)
            if not self.sync_interval_min:
                continue
            report = await asyncio.to_thread(self.engine.perform_sync)
            self.logger.info("Background sync: %s", report.summary())
            self._today.load()

    async def _connectivity_loop(self):
        # the only place the network check runs; regained listeners fire from here
        while True:
            try:
                await asyncio.to_thread(self.connectivity.check)
            except Exception:
                self.logger.exception("Connectivity check failed")
            await asyncio.sleep(GOOGLE_SYNC.connectivity_interval_sec)

    def _start_loops(self) -> None:
        self._monitor_task = self.page.run_task(self.monitor.run, self._monitor_stop)
        self._clock_task = self.page.run_task(self._clock_loop)
        if GOOGLE_SYNC.enabled:
            self._sync_task = self.page.run_task(self._sync_loop)
            self._connectivity_task = self.page.run_task(self._connectivity_loop)

    def _on_lifecycle_change(self, e) -> None:
        if e.state == ft.AppLifecycleState.RESUME:
            self.logger.info("App resumed")
            self.monitor.on_app_resumed()
            self._today.load()

    # ---------- монтаж ----------
    def mount(self):
        self.page.controls.clear()
        self.page.add(self.root)
        self.page.on_app_lifecycle_state_change = self._on_lifecycle_change

        self.content.content = self._today.view
        self.page.update()

        self.monitor.on_app_resumed()
        self._today.activate_from_menu()
        self._start_loops()

    def on_nav_change(self, e: ft.ControlEvent):
        idx = int(e.control.selected_index)
        if idx == 0:
            self.content.content = self._today.view
            self._today.activate_from_menu()
        else:
            self.content.content = self._settings.view
            self._settings.refresh_status()
        self.page.update()

    # ---------- публичные утилиты для страниц ----------
    def sync_now(self) -> SyncReport:
        report = self.engine.perform_sync()
        self._today.load()
        return report

    def force_full_resync(self) -> SyncReport:
        report = self.engine.force_full_resync()
        self._today.load()
        return report

    def connect_google(self) -> bool:
        self.gateway.connect(interactive=True)
        self.sync_now()
        return True

    def disconnect_google(self) -> None:
        self.gateway.disconnect()
        self.cursor_store.clear_all()

    def sync_status(self) -> dict:
        return self.engine.status()

    def set_sync_interval(self, minutes: Optional[int]) -> None:
        self.sync_interval_min = minutes
        self.logger.info("Background sync interval: %s", minutes or "off")

    def read_sync_log(self, lines: int = 100) -> str:
        return read_log_tail(lines) or "Лог синхронизации пока не создан."
