# Overview: State-change notifications for external observers.

"""
Change events emitted by the ledger.

Sent after the owning transaction commits, never on rollback. Receivers
(dashboard push, cache invalidation) are optional; the core never waits on
them.

    from co2ledger.signals import tank_level_changed

    @tank_level_changed.connect
    def on_level(sender, tank, movement, **extra):
        ...
"""
from blinker import Namespace

_signals = Namespace()

cylinders_changed = _signals.signal("cylinders-changed")
fillings_recorded = _signals.signal("fillings-recorded")
transfers_recorded = _signals.signal("transfers-recorded")
adjustments_recorded = _signals.signal("adjustments-recorded")
tank_level_changed = _signals.signal("tank-level-changed")
record_reversed = _signals.signal("record-reversed")
