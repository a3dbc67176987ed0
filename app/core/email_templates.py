"""Email templates for transformation notifications."""

from html import escape
from typing import Optional


def _plan_paragraphs(plan: str) -> str:
    lines = [line.strip() for line in (plan or "").split("\n") if line.strip()]
    return "".join(
        f'<p style="margin: 0 0 8px; color: #555555; font-size: 15px; line-height: 1.6;">{escape(line)}</p>'
        for line in lines
    )


def get_transformation_ready_email(
    first_name: Optional[str],
    before_image_url: str,
    after_image_url: str,
    plan: str,
    results_url: str,
    tracking_pixel_url: Optional[str] = None,
) -> tuple[str, str]:
    """
    Get HTML and plain text versions of the "your room is ready" email.

    Args:
        first_name: Recipient's first name, if known
        before_image_url: Public URL of the uploaded photo
        after_image_url: Public URL of the generated photo
        plan: Decluttering plan text
        results_url: Link to the results page
        tracking_pixel_url: Open-tracking image URL, embedded when given

    Returns:
        Tuple of (html_body, text_body)
    """
    greeting = f"Hi {first_name}," if first_name else "Hi there,"
    plan_html = _plan_paragraphs(plan)

    plan_section = ""
    if plan_html:
        plan_section = f"""
                            <div style="background-color: #f9f9f9; border-left: 4px solid #9caf88; padding: 24px; border-radius: 16px; margin-bottom: 32px;">
                                <h2 style="margin: 0 0 16px; color: #3a3a3a; font-size: 18px; font-weight: 600;">Your Decluttering Plan</h2>
                                {plan_html}
                            </div>"""

    tracking_pixel = ""
    if tracking_pixel_url:
        tracking_pixel = (
            f'    <img src="{escape(tracking_pixel_url)}" width="1" height="1" alt="" '
            f'style="display: block; width: 1px; height: 1px; border: 0;">'
        )

    html_body = f"""
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Your Room Transformation is Ready</title>
</head>
<body style="margin: 0; padding: 0; font-family: 'Helvetica Neue', Helvetica, Arial, sans-serif; background-color: #fdf8f3;">
    <table width="100%" cellpadding="0" cellspacing="0" style="background-color: #fdf8f3; padding: 40px 20px;">
        <tr>
            <td align="center">
                <table width="600" cellpadding="0" cellspacing="0" style="background-color: #fefcfa; border-radius: 24px; box-shadow: 0 4px 24px rgba(58, 58, 58, 0.06); overflow: hidden;">
                    <tr>
                        <td style="padding: 40px 40px 0; text-align: center;">
                            <h1 style="margin: 0; color: #3a3a3a; font-size: 28px; font-weight: 500;">Your Space, Transformed</h1>
                        </td>
                    </tr>
                    <tr>
                        <td style="padding: 32px 40px 40px;">
                            <p style="margin: 0 0 16px; color: #4b5563; font-size: 16px; line-height: 1.6;">{escape(greeting)}</p>
                            <p style="margin: 0 0 24px; color: #8a8a8a; font-size: 16px; line-height: 1.6;">
                                Great news! Your room transformation is complete. Here is what your space could become.
                            </p>
                            <p style="margin: 0 0 12px; color: #3a3a3a; font-weight: 600; font-size: 14px; text-transform: uppercase;">Before</p>
                            <img src="{escape(before_image_url)}" alt="Before" style="width: 100%; border-radius: 16px; margin-bottom: 20px;">
                            <p style="margin: 0 0 12px; color: #3a3a3a; font-weight: 600; font-size: 14px; text-transform: uppercase;">After</p>
                            <img src="{escape(after_image_url)}" alt="After" style="width: 100%; border-radius: 16px; margin-bottom: 32px;">
{plan_section}
                            <table width="100%" cellpadding="0" cellspacing="0">
                                <tr>
                                    <td align="center">
                                        <a href="{escape(results_url)}" style="display: inline-block; background: linear-gradient(135deg, #9caf88 0%, #7a9166 100%); color: #ffffff; text-decoration: none; padding: 18px 36px; border-radius: 50px; font-size: 16px; font-weight: 600;">
                                            View Full Transformation
                                        </a>
                                    </td>
                                </tr>
                            </table>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
{tracking_pixel}
</body>
</html>
"""

    text_body = f"""{greeting}

Great news! Your room transformation is complete.

Before: {before_image_url}
After: {after_image_url}

Your Decluttering Plan:
{plan or "(no plan available)"}

View the full transformation: {results_url}
"""

    return html_body, text_body
