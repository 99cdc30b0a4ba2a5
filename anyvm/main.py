"""
anyvm 应用程序主入口点。
"""

import signal
import sys
from typing import List, Optional

from anyvm.cli import create_parser, parse_arguments, run_cli
from anyvm.core.cancellation import CancelToken, install_interrupt_handler


def main(args: Optional[List[str]] = None) -> int:
    """
    应用程序主入口点。

    参数:
        args: 命令行参数。如果为 None，将使用 sys.argv[1:]。

    返回:
        退出码（0 表示成功，非零表示错误）。
    """
    parser = create_parser()
    parsed_args = parse_arguments(parser, args)

    cancel_token = CancelToken()
    previous = install_interrupt_handler(cancel_token)
    try:
        return run_cli(parsed_args, cancel_token)
    finally:
        signal.signal(signal.SIGINT, previous)


def run() -> None:
    """控制台脚本 avm 的入口。"""
    sys.exit(main())


if __name__ == "__main__":
    run()
