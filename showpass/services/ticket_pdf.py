"""
PDF e-ticket with QR code
"""
import io
import logging

import qrcode  # type: ignore[import-untyped]
from reportlab.lib import colors  # type: ignore[import-untyped]
from reportlab.lib.pagesizes import A4  # type: ignore[import-untyped]
from reportlab.lib.utils import ImageReader  # type: ignore[import-untyped]
from reportlab.pdfgen import canvas  # type: ignore[import-untyped]

from showpass.database import models

logger = logging.getLogger(__name__)

# Color Theme
BLACK = "#000000"
GOLDEN = "#D4AF37"
RED = "#C41E3A"
WHITE = "#FFFFFF"
DARK_GRAY = "#1a1a1a"


def qr_image(payload: str) -> ImageReader:
    qr = qrcode.QRCode(version=1, box_size=10, border=2)
    qr.add_data(payload)
    qr.make(fit=True)
    buffer = io.BytesIO()
    qr.make_image(fill_color=BLACK, back_color=WHITE).save(buffer, format="PNG")
    buffer.seek(0)
    return ImageReader(buffer)


def seat_labels(booking: models.Booking) -> str:
    return ", ".join(f"{s['rowLabel']}{s['seatNumber']}" for s in booking.selected_seats or [])


def render_ticket_pdf(booking: models.Booking, ticket: models.ETicket) -> bytes:
    """Render the booking's e-ticket as a single A4 page and return the PDF bytes."""
    showtime = booking.showtime
    movie_title = showtime.movie.title if showtime.movie is not None else "Movie"
    hall_name = showtime.hall.name if showtime.hall is not None else ""

    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4

    # === BACKGROUND AND BORDER ===
    c.setFillColor(colors.HexColor(BLACK))
    c.rect(0, 0, width, height, fill=1, stroke=0)
    c.setStrokeColor(colors.HexColor(GOLDEN))
    c.setLineWidth(4)
    c.rect(15, 15, width - 30, height - 30, stroke=1, fill=0)

    # === HEADER ===
    c.setFillColor(colors.HexColor(WHITE))
    c.setFont("Helvetica-Bold", 28)
    c.drawString(40, height - 60, "ShowPass")
    c.setFillColor(colors.HexColor(GOLDEN))
    c.setFont("Helvetica-Bold", 14)
    c.drawRightString(width - 40, height - 60, booking.reference)
    c.setFont("Helvetica", 10)
    c.drawRightString(width - 40, height - 75, "BOOKING REFERENCE")
    c.setLineWidth(2)
    c.line(20, height - 100, width - 20, height - 100)

    # === MOVIE TITLE ===
    y = height - 140
    c.setFillColor(colors.HexColor(RED))
    c.roundRect(30, y - 45, width - 60, 45, 10, fill=1, stroke=0)
    c.setFillColor(colors.HexColor(WHITE))
    c.setFont("Helvetica-Bold", 20)
    c.drawCentredString(width / 2, y - 30, movie_title.upper())

    # === DETAILS ===
    y -= 80
    rows = (
        ("HALL", hall_name),
        ("SHOWTIME", f"{showtime.show_date.isoformat()} {showtime.show_time}"),
        ("SEATS", seat_labels(booking)),
        ("AMOUNT PAID", f"{booking.currency} {booking.final_amount:.2f}"),
        ("NAME", booking.customer_name),
        ("TICKET", ticket.ticket_number),
    )
    c.setFillColor(colors.HexColor(DARK_GRAY))
    c.roundRect(30, y - 30 * len(rows) - 10, width - 60, 30 * len(rows) + 20, 8, fill=1, stroke=0)
    for label, value in rows:
        c.setFillColor(colors.HexColor(GOLDEN))
        c.setFont("Helvetica-Bold", 11)
        c.drawString(45, y - 8, label)
        c.setFillColor(colors.HexColor(WHITE))
        c.setFont("Helvetica", 12)
        c.drawString(180, y - 8, str(value))
        y -= 30

    # === QR CODE ===
    qr_size = 180
    y -= 40
    c.drawImage(qr_image(ticket.qr_data), (width - qr_size) / 2, y - qr_size, qr_size, qr_size)
    c.setFillColor(colors.HexColor(GOLDEN))
    c.setFont("Helvetica", 10)
    c.drawCentredString(width / 2, y - qr_size - 20, "Present this code at the entrance")

    if not ticket.is_valid:
        c.setFillColor(colors.HexColor(RED))
        c.setFont("Helvetica-Bold", 48)
        c.drawCentredString(width / 2, height / 2, "CANCELLED")

    c.showPage()
    c.save()
    logger.info("Rendered ticket PDF for booking %s", booking.reference, extra={"booking_id": booking.id})
    return buffer.getvalue()
