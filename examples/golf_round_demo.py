import asyncio
import os
import sys
from contextlib import aclosing

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from dracula import DraculaSettings, create_dracula_from_env

# --- 1. Configuration ---

# Reads DRACULA_* variables; here we force the in-memory SQLite engine so the demo needs no server.
# Set DRACULA_DB_ENGINE=mongo plus DRACULA_MONGO_* to run the same code against MongoDB.
settings = DraculaSettings(db_engine=os.getenv("DRACULA_DB_ENGINE", "sqlite"))


async def main():
    async with await create_dracula_from_env(settings) as dracula:
        print(f"🧛 Dracula initialized on {type(dracula.store).__name__}.\n")

        # --- 2. Counting strokes ---
        print("--- Step 1: Recording a round ---")
        strokes = [
            (1, "drive"),
            (1, "putt"),
            (2, "drive"),
            (2, "chip"),
            (2, "putt"),
            (3, "drive"),
            (3, "putt"),
            (3, "putt"),
        ]
        for hole, shot in strokes:
            await dracula.create({"count": 1, "meta": {"hole": hole, "type": shot, "player": "ann"}})
        print(f"✅ Recorded {await dracula.compute()} strokes")

        # --- 3. Querying ---
        print("\n--- Step 2: Querying ---")
        putts = await dracula.compute({"meta.type": "putt"})
        from_hole_two = await dracula.get({"meta.hole": {"$gte": 2}}, {"limit": 3})
        print(f"Putts: {putts}")
        print(f"First strokes from hole 2 on: {[c.meta['type'] for c in from_hole_two]}")

        short_game = await dracula.get({"$or": [{"meta.type": "chip"}, {"meta.type": {"$regex": "^pu"}}]})
        print(f"Short game strokes: {len(short_game)}")

        # --- 4. Streaming ---
        print("\n--- Step 3: Streaming until the first chip ---")
        async with aclosing(dracula.stream({"meta.player": "ann"})) as counters:
            async for counter in counters:
                print(f"  hole {counter.meta['hole']}: {counter.meta['type']}")
                if counter.meta["type"] == "chip":
                    break

        # --- 5. Corrections ---
        print("\n--- Step 4: Penalty stroke on hole 3 ---")
        drive = (await dracula.get({"meta.hole": 3, "meta.type": "drive"}))[0]
        await dracula.update(drive.id, {"count": 2})
        total = sum(c.count for c in await dracula.get())
        print(f"✅ Score after penalty: {total}")

        # --- 6. Cleanup ---
        removed = await dracula.delete_all()
        print(f"\n🧹 Removed {removed} counters.")


if __name__ == "__main__":
    asyncio.run(main())
