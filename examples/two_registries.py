"""Two registries sharing one namespace converge over an in-process broker.

Run with: python examples/two_registries.py
Swap the memory transport for MQTTTransport to run the same thing across hosts.
"""

import asyncio
import logging

from confmirror import MemoryBroker, MemoryNamespaceStore, MemoryTransport, Registry


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(name)s - %(levelname)s - %(message)s")

    broker = MemoryBroker()
    store = MemoryNamespaceStore()

    a = Registry(store, MemoryTransport(broker), "demo", monitor=True)
    b = Registry(store, MemoryTransport(broker), "demo", monitor=True)

    for name in ("ready", "error", "updated", "cleared", "set"):
        b.on(name, lambda *args, name=name: print(f"[b:{name}] {args}"))

    b.watch("label1", lambda value: print(f"label1 changed: {value}"))

    await a.wait_ready()
    await b.wait_ready()
    await a.flush()
    await b.flush()

    a.set("label1", "Some value")
    a.set("label2", {"retries": 3})
    await a.flush()
    await asyncio.sleep(0)

    print("b sees:", b.snapshot())

    a.clear("label1")
    await a.flush()
    await asyncio.sleep(0)

    print("b sees:", b.snapshot())

    await a.close()
    await b.close()


if __name__ == "__main__":
    asyncio.run(main())
