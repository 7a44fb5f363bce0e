# chart.py
import io
from typing import Dict, List

from PIL import Image, ImageDraw, ImageFont

WIDTH, HEIGHT = 900, 320
MARGIN_L, MARGIN_R, MARGIN_T, MARGIN_B = 64, 24, 28, 44

LINE = (59, 130, 246)
FILL = (219, 234, 254)
GRID = (229, 231, 235)
TEXT = (55, 65, 81)


def render_cost_chart(series: List[Dict], title: str = "Coût par jour (MAD)") -> bytes:
    """
    Line chart of daily cost as PNG bytes.
    `series` is [{"day": "YYYY-MM-DD", "total_cost": float}, ...], oldest first.
    """
    img = Image.new("RGB", (WIDTH, HEIGHT), "white")
    draw = ImageDraw.Draw(img)
    font = ImageFont.load_default()

    draw.text((MARGIN_L, 6), title, fill=TEXT, font=font)

    x0, y0 = MARGIN_L, HEIGHT - MARGIN_B
    x1, y1 = WIDTH - MARGIN_R, MARGIN_T
    plot_w, plot_h = x1 - x0, y0 - y1

    if not series:
        draw.text((WIDTH // 2 - 40, HEIGHT // 2), "Aucune donnée", fill=TEXT, font=font)
        return _png(img)

    peak = max(float(p["total_cost"]) for p in series) or 1.0

    # y axis starts at zero; four horizontal grid lines
    for i in range(5):
        gy = y0 - plot_h * i / 4
        draw.line([(x0, gy), (x1, gy)], fill=GRID)
        draw.text((6, gy - 6), f"{peak * i / 4:,.0f}", fill=TEXT, font=font)

    step = plot_w / max(len(series) - 1, 1)
    points = [
        (x0 + i * step if len(series) > 1 else x0 + plot_w / 2,
         y0 - plot_h * float(p["total_cost"]) / peak)
        for i, p in enumerate(series)
    ]

    if len(points) > 1:
        draw.polygon([(points[0][0], y0)] + points + [(points[-1][0], y0)], fill=FILL)
        draw.line(points, fill=LINE, width=2)
    for (px, py) in points:
        draw.ellipse([px - 3, py - 3, px + 3, py + 3], fill=LINE)

    # label at most ~10 days so text does not overlap
    every = max(1, len(series) // 10)
    for i, p in enumerate(series):
        if i % every:
            continue
        _, month, day = p["day"].split("-")
        draw.text((points[i][0] - 12, y0 + 8), f"{day}/{month}", fill=TEXT, font=font)

    return _png(img)


def _png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
