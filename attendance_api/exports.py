import base64
import csv
import io
import json

import qrcode
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

EXPORT_HEADERS = ["date", "studentName", "rollNo", "className", "status"]

# x offsets (points) of the PDF table columns
PDF_COLUMNS = {"date": 50, "studentName": 120, "rollNo": 260, "className": 320, "status": 400}
PDF_HEADINGS = {"date": "Date", "studentName": "Name", "rollNo": "Roll", "className": "Class", "status": "Status"}
PDF_ROW_SPACING = 20
PDF_MARGIN = 50


def qr_png_bytes(payload):
    """Render a JSON payload as a QR code PNG."""
    qr = qrcode.QRCode(border=2)
    qr.add_data(json.dumps(payload))
    qr.make(fit=True)
    buffer = io.BytesIO()
    qr.make_image().save(buffer, format="PNG")
    return buffer.getvalue()


def make_qr_data_url(payload):
    encoded = base64.b64encode(qr_png_bytes(payload)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def decode_data_url(data_url):
    if not data_url or "," not in data_url:
        return None
    return base64.b64decode(data_url.split(",", 1)[1])


def attendance_csv(rows):
    buffer = io.StringIO()
    buffer.write(",".join(EXPORT_HEADERS) + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for row in rows:
        writer.writerow([row.get(h, "") for h in EXPORT_HEADERS])
    return buffer.getvalue().encode("utf-8")


def attendance_pdf(rows, title="Attendance Report"):
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4

    pdf.setTitle(title)
    pdf.setFont("Helvetica-Bold", 18)
    pdf.drawCentredString(width / 2, height - PDF_MARGIN, title)

    def draw_headings(y):
        pdf.setFont("Helvetica-Bold", 12)
        for key, x in PDF_COLUMNS.items():
            pdf.drawString(x, y, PDF_HEADINGS[key])
        pdf.setFont("Helvetica", 11)

    y = height - 100
    draw_headings(y)
    y -= PDF_ROW_SPACING
    for row in rows:
        for key, x in PDF_COLUMNS.items():
            pdf.drawString(x, y, str(row.get(key) or ""))
        y -= PDF_ROW_SPACING
        if y < PDF_MARGIN:
            pdf.showPage()
            y = height - PDF_MARGIN
            draw_headings(y)
            y -= PDF_ROW_SPACING

    pdf.save()
    return buffer.getvalue()
