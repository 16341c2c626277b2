"""
调度器 - 定时拉取账单
"""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class ScheduledTask:
    """定时任务"""

    def __init__(
        self,
        name: str,
        func: Callable,
        interval_minutes: int,
        args: tuple = (),
        kwargs: Optional[dict] = None,
    ):
        self.name = name
        self.func = func
        self.interval_minutes = interval_minutes
        self.args = args
        self.kwargs = kwargs or {}

        self.last_run: Optional[datetime] = None
        self.next_run: Optional[datetime] = None
        self.run_count = 0
        self.error_count = 0
        self.last_error: Optional[str] = None
        self.is_running = False

    def should_run(self, now: Optional[datetime] = None) -> bool:
        """是否应该执行"""
        if self.is_running:
            return False
        if self.next_run is None:
            return True
        return (now or datetime.now()) >= self.next_run

    def execute(self) -> Any:
        """执行任务，无论成功与否都排定下次执行时间"""
        self.is_running = True
        self.last_run = datetime.now()

        try:
            result = self.func(*self.args, **self.kwargs)
            self.run_count += 1
            self.last_error = None
            return result
        finally:
            self.is_running = False
            self.next_run = self.last_run + timedelta(minutes=self.interval_minutes)


class Scheduler:
    """任务调度器"""

    def __init__(self):
        self.tasks: Dict[str, ScheduledTask] = {}
        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def add_task(
        self,
        name: str,
        func: Callable,
        interval_minutes: int,
        args: tuple = (),
        kwargs: Optional[dict] = None,
    ) -> ScheduledTask:
        """添加定时任务"""
        with self._lock:
            task = ScheduledTask(
                name=name,
                func=func,
                interval_minutes=interval_minutes,
                args=args,
                kwargs=kwargs,
            )
            self.tasks[name] = task
            return task

    def remove_task(self, name: str) -> bool:
        with self._lock:
            return self.tasks.pop(name, None) is not None

    def get_task(self, name: str) -> Optional[ScheduledTask]:
        return self.tasks.get(name)

    def list_tasks(self) -> List[Dict[str, Any]]:
        """列出所有任务"""
        return [
            {
                'name': name,
                'interval_minutes': task.interval_minutes,
                'last_run': task.last_run.isoformat() if task.last_run else None,
                'next_run': task.next_run.isoformat() if task.next_run else None,
                'run_count': task.run_count,
                'error_count': task.error_count,
                'last_error': task.last_error,
                'is_running': task.is_running,
            }
            for name, task in self.tasks.items()
        ]

    def start(self, interval: int = 60) -> None:
        """
        前台运行调度器，直到 stop() 或 Ctrl+C

        Args:
            interval: 检查间隔（秒）
        """
        if self._running:
            return

        self._running = True
        self._stop_event.clear()
        self._loop(interval)

    def start_background(self, interval: int = 60) -> threading.Thread:
        """在后台线程启动调度器"""
        # 状态在线程启动前设置，紧接着调用 stop() 也能生效
        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, args=(interval,), daemon=True)
        self._thread.start()
        return self._thread

    def _loop(self, interval: int) -> None:
        logger.info("[→] 调度器启动，检查间隔: %d秒", interval)
        try:
            while self._running:
                self.run_pending()
                if self._stop_event.wait(interval):
                    break
        except KeyboardInterrupt:
            logger.info("[✓] 调度器收到停止信号")
        finally:
            self._running = False

    def stop(self) -> None:
        """停止调度器"""
        self._running = False
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)

    def run_pending(self) -> int:
        """
        执行所有到期任务

        Returns:
            本轮执行的任务数
        """
        with self._lock:
            tasks_to_run = [task for task in self.tasks.values() if task.should_run()]

        for task in tasks_to_run:
            logger.info("[→] 执行任务: %s", task.name)
            started = time.monotonic()
            try:
                result = task.execute()
            except Exception as e:
                # 任务失败不影响调度循环
                task.error_count += 1
                task.last_error = str(e)
                logger.exception("[✗] 任务失败: %s - %s", task.name, e)
            else:
                logger.info("[✓] 任务完成: %s (%.1fs) %s",
                            task.name, time.monotonic() - started, result or '')
        return len(tasks_to_run)


def create_ingest_scheduler(ingestor: Any, interval_minutes: int = 60) -> Scheduler:
    """创建预置了账单拉取任务的调度器"""
    scheduler = Scheduler()
    scheduler.add_task(
        name="bill_fetch",
        func=ingestor.run,
        interval_minutes=interval_minutes,
    )
    return scheduler
