import inspect
from collections import defaultdict
from typing import Callable, Dict, List

from meet_translator.app.core.logger import logger


def _key(event) -> str:
    # Enum 成员和对应的字符串值视为同一事件
    return getattr(event, "value", event)


class EventEmitter:
    """按事件类型注册回调，回调可以是同步函数或协程函数"""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)

    def on(self, event: str, callback: Callable):
        self._listeners[_key(event)].append(callback)
        return callback

    def off(self, event: str, callback: Callable):
        listeners = self._listeners.get(_key(event), [])
        if callback in listeners:
            listeners.remove(callback)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(_key(event), []))

    async def emit(self, event: str, *args):
        # 回调异常只记录日志，不影响发送方的处理流程
        for callback in list(self._listeners.get(_key(event), [])):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Listener for {_key(event)!r} failed: {e}")
