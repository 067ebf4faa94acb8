"""
`python -m sessionhub` 入口：等价于安装后的 `sessionhub` 命令。
"""

from sessionhub.cli.commands import app

if __name__ == "__main__":
    app(prog_name="sessionhub")
