"""
二维码渲染 - 把协议客户端给出的配对内容渲染为可寻址的 PNG 文件和内联 data URL。

- PNG 文件：<qr_dir>/<session_id>.png，供静态文件服务按会话 ID 访问
- data URL：data:image/png;base64,...，保存在内存中供 API 立即返回

依赖：
- qrcode[pil]：二维码编码与 PNG 输出
"""

import asyncio
import base64
import io
from pathlib import Path

import qrcode

from sessionhub.utils.helpers import ensure_dir, safe_filename


class QRRenderer:
    """二维码渲染器。图片编码是 CPU 密集操作，放到线程池执行以免阻塞事件循环。"""

    def __init__(self, qr_dir: Path):
        self.qr_dir = qr_dir

    def image_path(self, session_id: str) -> Path:
        return self.qr_dir / f"{safe_filename(session_id)}.png"

    def _render(self, session_id: str, payload: str) -> str:
        image = qrcode.make(payload)
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        png = buffer.getvalue()

        ensure_dir(self.qr_dir)
        self.image_path(session_id).write_bytes(png)
        return "data:image/png;base64," + base64.b64encode(png).decode("ascii")

    async def render(self, session_id: str, payload: str) -> str:
        """
        渲染二维码，写出 PNG 文件并返回 data URL。

        参数:
            session_id: 会话 ID（决定文件名）
            payload: 协议客户端给出的二维码原始内容
        """
        return await asyncio.to_thread(self._render, session_id, payload)

    def remove(self, session_id: str) -> None:
        """删除会话的二维码图片（不存在时忽略）。"""
        self.image_path(session_id).unlink(missing_ok=True)
