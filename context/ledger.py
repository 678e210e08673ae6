"""
Work Ledger - De-duplicating concurrent execution cache for per-resource work.
工作账本 —— 按资源去重的并发执行缓存。

Many concurrent callers may ask for the same expensive piece of work (e.g.
stripping one assembly that several framework targets need). The ledger
guarantees that exactly one of them, the claimant, performs it; every other
caller awaits the claimant's completion handle and observes the same outcome.

多个并发调用方可能请求同一项昂贵工作（例如多个目标框架都需要剥离同一个程序集）。
账本保证只有一个调用方（认领者）执行该工作；其余调用方等待认领者的完成句柄，并观察到相同结果。

Protocol:
    is_claimant, handle = ledger.acquire(key, already_done)
    if is_claimant:
        try:
            do_work()
        except asyncio.CancelledError:
            handle.abandon()
            raise
        except BaseException as exc:
            handle.fail(exc)   # re-raised unless it is an ordinary Exception
        else:
            handle.succeed()
    await handle.wait()   # re-raises the claimant's exception on failure

协议：
    认领者执行工作后必须调用 succeed()、fail() 或 abandon()，任何退出路径都不能让句柄悬而未决；
    所有调用方（包括认领者）都可 await handle.wait()，失败时重新抛出认领者的异常。
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from typing import Any, Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LedgerHandle(Generic[T]):
    """
    Completion handle shared by every requester of one ledger key.
    同一账本键的所有请求方共享的完成句柄。
    """

    def __init__(self, key: str, future: asyncio.Future[T]):
        self.key = key
        self._future = future

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def failed(self) -> bool:
        return self._future.done() and not self._future.cancelled() and self._future.exception() is not None

    def succeed(self, result: T | None = None) -> None:
        if self._future.done():
            raise RuntimeError(f"Ledger handle for '{self.key}' was already signalled")
        self._future.set_result(result)  # type: ignore[arg-type]

    def fail(self, exc: BaseException) -> None:
        if self._future.done():
            raise RuntimeError(f"Ledger handle for '{self.key}' was already signalled")
        self._future.set_exception(exc)

    def abandon(self) -> None:
        """
        The claimant was cancelled: cancel the shared future so waiters see CancelledError.
        认领者被取消：取消共享 future，等待方随之收到 CancelledError。
        """
        if not self._future.done():
            self._future.cancel()

    @property
    def abandoned(self) -> bool:
        return self._future.cancelled()

    async def wait(self) -> T:
        """
        Await completion. Re-raises the claimant's exception if it failed.
        shield() keeps one cancelled waiter from cancelling the shared future.
        等待完成；若认领者失败则重新抛出其异常。
        """
        return await asyncio.shield(self._future)


class WorkLedger:
    """
    Concurrency-safe map: work key -> completion handle.
    并发安全的映射：工作键 -> 完成句柄。

    The "check existing entry, else claim" sequence runs under a lock so that
    exactly one claimant is chosen even when callers race on the same key.
    Entries persist for the lifetime of the ledger (one graph execution).

    「检查已有条目，否则认领」的过程在锁内完成，即使调用方在同一键上竞争，也只会选出一个认领者。
    条目在账本生命周期内（一次任务图执行）一直保留。
    """

    def __init__(self, name: str = "ledger"):
        self.name = name
        self._entries: dict[str, LedgerHandle[Any]] = {}
        self._lock = threading.Lock()
        self._claimed_keys: list[str] = []       # 实际执行过工作的键（按认领顺序）
        self._precompleted_keys: list[str] = []  # 因产物已存在而直接完成的键

    def acquire(self, key: str, already_done: Callable[[], bool] | None = None) -> tuple[bool, LedgerHandle[Any]]:
        """
        Claim `key` or join the existing claim.

        Returns (is_first_claimant, handle). When `already_done()` reports that
        the work's output already exists, the key is registered as completed and
        every caller, including the first, is a non-claimant.

        认领 `key` 或加入已有认领。
        返回 (是否首个认领者, 句柄)。若 `already_done()` 表示产物已存在，
        该键直接登记为已完成，所有调用方（包括第一个）都不是认领者。
        """
        loop = asyncio.get_running_loop()
        with self._lock:
            handle = self._entries.get(key)
            if handle is not None:
                return False, handle

            materialized = already_done is not None and already_done()

            future: asyncio.Future[Any] = loop.create_future()
            handle = LedgerHandle(key, future)
            self._entries[key] = handle

            if materialized:
                future.set_result(None)
                self._precompleted_keys.append(key)
                logger.debug("[Ledger:%s] %s already materialized", self.name, key)
                return False, handle

            self._claimed_keys.append(key)
            logger.debug("[Ledger:%s] %s claimed", self.name, key)
            return True, handle

    async def run_once(
        self,
        key: str,
        work: Callable[[], Awaitable[T] | T],
        already_done: Callable[[], bool] | None = None,
    ) -> T | None:
        """
        Run `work` at most once for `key` and wait for its outcome.
        The claimant's failure is re-raised to every caller.

        对 `key` 最多执行一次 `work` 并等待结果；认领者的失败会重新抛给每个调用方。
        """
        is_claimant, handle = self.acquire(key, already_done)
        if is_claimant:
            try:
                outcome = work()
                if inspect.isawaitable(outcome):
                    outcome = await outcome
            except asyncio.CancelledError:
                handle.abandon()
                raise
            except Exception as exc:
                handle.fail(exc)
            except BaseException as exc:
                # KeyboardInterrupt / SystemExit 等：先通知等待方，再继续向上抛出
                handle.fail(exc)
                raise
            else:
                handle.succeed(outcome)
        return await handle.wait()

    # ------------------------------------------------------------------
    # Inspection
    # 查询
    # ------------------------------------------------------------------

    @property
    def claimed_keys(self) -> list[str]:
        with self._lock:
            return list(self._claimed_keys)

    @property
    def precompleted_keys(self) -> list[str]:
        with self._lock:
            return list(self._precompleted_keys)

    @property
    def claimant_count(self) -> int:
        with self._lock:
            return len(self._claimed_keys)

    def handle_for(self, key: str) -> LedgerHandle[Any] | None:
        with self._lock:
            return self._entries.get(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
