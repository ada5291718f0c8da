"""
RefreshBus — publish/subscribe по ключу канала для обновления read-view

subscribe() возвращает Subscription handle с идемпотентным unsubscribe().
Один и тот же callback, подписанный на канал дважды, получает событие не более одного раза.
Исключение в одном подписчике логируется и не мешает остальным.
"""

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]

CHANNEL_ORDERS = "orders"
CHANNEL_BALANCES = "balances"


class Subscription:
    """Handle подписки."""

    def __init__(self, bus: "RefreshBus", channel: str, listener: Listener):
        self._bus = bus
        self.channel = channel
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._bus._remove(self)


class RefreshBus:
    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def subscribe(self, channel: str, listener: Listener) -> Subscription:
        subscription = Subscription(self, channel, listener)
        self._subscriptions.setdefault(channel, []).append(subscription)
        return subscription

    def publish(self, channel: str, event: Any) -> int:
        """
        Доставка события подписчикам канала.

        Returns:
            Количество вызванных listener'ов
        """
        delivered: List[Listener] = []
        # копия: listener может отписаться во время доставки
        for subscription in list(self._subscriptions.get(channel, ())):
            if not subscription.active or subscription.listener in delivered:
                continue
            delivered.append(subscription.listener)
            try:
                subscription.listener(event)
            except Exception:
                logger.exception("Listener for channel %s failed", channel)
        return len(delivered)

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscriptions.get(channel, ()))

    def _remove(self, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.channel)
        if not subscriptions:
            return
        subscriptions[:] = [s for s in subscriptions if s is not subscription]
        if not subscriptions:
            del self._subscriptions[subscription.channel]
