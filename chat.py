import asyncio
import logging
import os

from roomchat.constants import DEFAULT_PATH
from roomchat.container import RoomContainer
from roomchat.repositories import ConfigRepository

CLOCK_REFRESH_SECONDS = 30.0


def prompt_for_path() -> str:
    print("--- Room Chat Setup ---")
    if DEFAULT_PATH:
        print(f"\nDefault data folder: {DEFAULT_PATH}")
        prompt_msg = "Enter shared data folder [Press Enter for default]: "
    else:
        prompt_msg = "Enter shared data folder: "

    while True:
        user_path = input(prompt_msg).strip()
        if not user_path:
            if DEFAULT_PATH:
                user_path = DEFAULT_PATH
            else:
                continue
        data_root = user_path.replace('"', "").replace("'", "")
        if os.path.isdir(data_root):
            return data_root

        print(f"Warning: Path '{data_root}' was not found.")
        choice = input("Is this a mapped drive? Force use anyway? (y/n/create): ").lower()
        if choice == "y":
            return data_root
        if choice == "create":
            try:
                os.makedirs(data_root)
                return data_root
            except OSError as exc:
                print(f"Failed to create: {exc}")


def resolve_data_root(config_repository: ConfigRepository) -> str:
    data_root = config_repository.load_config().get("path") or DEFAULT_PATH
    if not data_root or not os.path.exists(data_root):
        data_root = prompt_for_path()
        config_repository.update_config(path=data_root)
    return data_root


async def refresh_clock(room) -> None:
    while room.mounted:
        await asyncio.sleep(CLOCK_REFRESH_SECONDS)
        room.refresh_view()


async def run_room(container: RoomContainer) -> None:
    container.storage_service().ensure_paths()
    container.theme_store().load()
    await container.auth_service().restore()

    room = container.room()
    room.attach_view(container.view())
    await room.mount()
    clock = asyncio.create_task(refresh_clock(room))
    try:
        await room.view.run_async()
    finally:
        clock.cancel()
        await room.unmount()


def main() -> None:
    container = RoomContainer()
    data_root = resolve_data_root(container.config_repository())
    print(f"Connecting to: {data_root}")
    container.data_root.override(data_root)
    try:
        asyncio.run(run_room(container))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
    main()
