from __future__ import annotations

from aloof_chat.app import main


if __name__ == "__main__":
    main()
