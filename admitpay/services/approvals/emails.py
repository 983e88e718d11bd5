"""HTML bodies for approval and rejection emails."""

import html
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from admitpay.common.money import json_amount


@dataclass(frozen=True)
class ApprovalEmail:
    """Values rendered into the approval email."""

    applicant_name: str
    application_number: str
    course_name: str
    course_duration: str
    approved_at: str
    approved_by: str
    total_course_fees: Decimal
    discount: Decimal
    final_fee_payment: Decimal
    payment_option_text: str
    direct_pay_url: str
    razor_pay_url: str


def format_display_date(iso_value: str) -> str:
    """`2026-10-19T09:30:00+00:00` -> `19 Oct 2026 | 09:30 AM`."""

    try:
        parsed = datetime.fromisoformat(iso_value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return iso_value
    return f"{parsed.strftime('%d %b %Y')} | {parsed.strftime('%I:%M %p')}"


def _rs(value: Decimal) -> str:
    return f"Rs.{json_amount(value)}"


def render_approval_email(data: ApprovalEmail, help_desk_email: str, base_url: str) -> str:
    e = html.escape
    discount_text = ""
    if data.discount > 0:
        discount_text = (
            f"( you are missing {_rs(data.discount)} Discount on Full Payment i.e: "
            f"{_rs(data.total_course_fees - data.discount)} )"
        )
    application_url = f"{base_url}/application/{data.application_number}"
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <style>
    body {{ margin: 0; padding: 0; font-family: Arial, sans-serif; background-color: #f5f5f5; }}
    .container {{ max-width: 600px; margin: 0 auto; background: #fff; }}
    .header {{ background: #4a148c; color: #fff; padding: 20px; text-align: right; }}
    .header .logo {{ float: left; font-size: 20px; font-weight: bold; }}
    .header .logo .pink {{ color: #ff4081; }}
    .success-banner {{ background: #4caf50; color: #fff; padding: 20px; }}
    .section-title {{ background: #4a148c; color: #fff; text-align: center; padding: 12px; font-weight: bold; }}
    .details-label {{ padding: 15px 20px; font-weight: bold; color: #fff; background: #7b1fa2; width: 40%; }}
    .details-value {{ padding: 15px 20px; background: #fce4ec; color: #333; }}
    .final-fee {{ background: #4a148c; color: #fff; padding: 15px 20px; text-align: center; font-size: 18px; }}
    .buttons {{ text-align: center; padding: 20px; }}
    .btn {{ display: inline-block; padding: 12px 30px; margin: 5px; text-decoration: none; border-radius: 4px; }}
    .btn-purple {{ background: #7b1fa2; color: #fff; }}
    .btn-white {{ background: #fff; color: #4a148c; border: 2px solid #4a148c; }}
    .footer {{ padding: 20px; text-align: center; background: #f5f5f5; font-size: 11px; color: #666; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header">
      <div class="logo">neram<span class="pink">Classes.com</span></div>
      <div>
        Need help? <a href="mailto:{e(help_desk_email)}" style="color: #fff;">Contact us</a><br>
        Application Number: {e(data.application_number)}
      </div>
    </div>

    <div class="success-banner">
      <h2>Congratulations {e(data.applicant_name)},</h2>
      <p>Your Application has been Approved</p>
      <a href="{e(application_url)}" style="color: #fff;">View Application</a>
    </div>

    <div class="section-title">Complete Fee Payment to get enrolled for the Class</div>
    <table width="100%" cellspacing="0" cellpadding="0">
      <tr><td class="details-label">Course Name :</td><td class="details-value">{e(data.course_name)}</td></tr>
      <tr><td class="details-label">Course Duration :</td><td class="details-value">{e(data.course_duration)}</td></tr>
      <tr><td class="details-label">Approved At :</td><td class="details-value">{e(format_display_date(data.approved_at))}</td></tr>
      <tr><td class="details-label">Approved By :</td><td class="details-value">{e(data.approved_by)}</td></tr>
      <tr><td class="details-label">Enrollment Request :</td><td class="details-value" style="color: #4caf50;">Approved</td></tr>
    </table>

    <div class="section-title">Fees Details</div>
    <table width="100%" cellspacing="0" cellpadding="10">
      <tr><td><b>Total Course Fees :</b></td><td>{_rs(data.total_course_fees)} {e(discount_text)}</td></tr>
      <tr><td><b>Pay Option :</b></td><td>{e(data.payment_option_text)}</td></tr>
    </table>

    <div style="text-align: center; padding: 10px; font-size: 13px; color: #666;">
      To avail full payment {_rs(data.discount)} Discount Email Us / <a href="tel:9176137043" style="color: #7b1fa2;">9176137043</a>
    </div>

    <div class="final-fee">Final Fee Payment : {_rs(data.final_fee_payment)}</div>

    <div class="buttons">
      <a href="{e(data.direct_pay_url)}" class="btn btn-purple">Direct Pay</a>
      <a href="{e(data.razor_pay_url)}" class="btn btn-white">Razor Pay</a>
    </div>
    <div style="text-align: center; padding: 10px; font-size: 13px; color: #666;">Direct Pay has Rs.100 Cashback offer</div>

    <div class="footer">
      Click here to <a href="{e(base_url)}/unsubscribe">unsubscribe</a> or manage your email preferences.<br>
      Please do not reply to this email. Emails sent to this address will not be answered.
    </div>
  </div>
</body>
</html>
"""


def render_rejection_email(applicant_name: str, help_desk_email: str) -> str:
    return (
        '<div style="font-family:Arial,sans-serif;font-size:14px;color:#222">'
        f"<p>Dear {html.escape(applicant_name or 'Applicant')},</p>"
        "<p>We're sorry to inform you that your application has been <b>Rejected</b>.</p>"
        "<p>If you believe this is an error or need assistance, please contact our helpdesk at "
        f"{html.escape(help_desk_email)}.</p>"
        "<p>Regards,<br/>Neram Classes</p>"
        "</div>"
    )
