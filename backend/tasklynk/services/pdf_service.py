from fpdf import FPDF


def _latin1(text: str) -> str:
    """fpdf built-in fonts are latin-1 only; replace anything else."""
    return text.encode("latin-1", errors="replace").decode("latin-1")


def _money(amount: float) -> str:
    return f"KSh {amount:,.2f}"


def generate_invoice_pdf(
    invoice_number: str,
    issued_at: str,
    order_id: str,
    description: str,
    client_name: str,
    client_display_id: str,
    amount: float,
    freelancer_amount: float,
    admin_commission: float,
    paid_at: str | None = None,
    show_split: bool = False,
) -> bytes:
    pdf = FPDF()
    pdf.set_margins(20, 20, 20)
    pdf.add_page()

    pdf.set_font("Helvetica", "B", 20)
    pdf.cell(0, 12, "TaskLynk", new_x="LMARGIN", new_y="NEXT")
    pdf.set_font("Helvetica", "B", 14)
    pdf.cell(0, 9, _latin1(f"Invoice {invoice_number}"), new_x="LMARGIN", new_y="NEXT")
    pdf.ln(2)

    pdf.set_font("Helvetica", "", 11)
    pdf.set_text_color(80, 80, 80)
    pdf.cell(0, 7, _latin1(f"Issued: {issued_at}"), new_x="LMARGIN", new_y="NEXT")
    pdf.cell(0, 7, _latin1(f"Order: {order_id}"), new_x="LMARGIN", new_y="NEXT")
    pdf.cell(0, 7, _latin1(f"Billed to: {client_name} ({client_display_id})"), new_x="LMARGIN", new_y="NEXT")
    if paid_at:
        pdf.set_text_color(0, 120, 60)
        pdf.cell(0, 7, _latin1(f"Paid: {paid_at}"), new_x="LMARGIN", new_y="NEXT")

    pdf.ln(3)
    pdf.set_draw_color(200, 200, 200)
    pdf.line(20, pdf.get_y(), 190, pdf.get_y())
    pdf.ln(5)

    pdf.set_text_color(0, 0, 0)
    pdf.set_font("Helvetica", "", 11)
    pdf.multi_cell(0, 6, _latin1(description), new_x="LMARGIN", new_y="NEXT")
    pdf.cell(0, 6, _money(amount), align="R", new_x="LMARGIN", new_y="NEXT")
    pdf.ln(6)

    if show_split:
        pdf.set_font("Helvetica", "", 10)
        pdf.set_text_color(80, 80, 80)
        pdf.cell(120, 6, "Writer payout (70%)")
        pdf.cell(0, 6, _money(freelancer_amount), align="R", new_x="LMARGIN", new_y="NEXT")
        pdf.cell(120, 6, "Platform commission (30%)")
        pdf.cell(0, 6, _money(admin_commission), align="R", new_x="LMARGIN", new_y="NEXT")
        pdf.ln(2)

    pdf.set_text_color(0, 0, 0)
    pdf.set_font("Helvetica", "B", 12)
    pdf.cell(120, 8, "Total")
    pdf.cell(0, 8, _money(amount), align="R", new_x="LMARGIN", new_y="NEXT")

    return bytes(pdf.output())
