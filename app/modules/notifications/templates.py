"""HTML bodies for transactional emails. Interpolated values are HTML-escaped."""
from html import escape
from typing import Optional


def otp_email(code: str, purpose: str, expiry_minutes: int = 5) -> tuple:
    label = purpose.replace("_", " ")
    subject = f"Your {label.upper()} Verification Code"
    label, code = escape(label), escape(code)
    html = f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: #333;">Verification Code</h2>
        <p>Your verification code for {label} is:</p>
        <div style="background: #f5f5f5; padding: 20px; text-align: center; margin: 20px 0;">
          <h1 style="color: #007bff; font-size: 36px; margin: 0; letter-spacing: 5px;">{code}</h1>
        </div>
        <p style="color: #666;">
          This code is valid for {expiry_minutes} minutes. Do not share this code with anyone.
        </p>
        <hr style="margin: 30px 0;">
        <p style="color: #999; font-size: 12px;">
          If you didn't request this code, please ignore this email.
        </p>
      </div>
    """
    return subject, html


def account_credentials_email(name: str, email: str, password: str, role: str, login_url: str) -> tuple:
    subject = "Your TecBunny Store account"
    name, email, password, role = escape(name), escape(email), escape(password), escape(role)
    login_url = escape(login_url, quote=True)
    html = f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: #333;">Welcome to TecBunny Store, {name}</h2>
        <p>An account has been created for you with the role <strong>{role}</strong>.</p>
        <table style="margin: 20px 0;">
          <tr><td>Email:</td><td><strong>{email}</strong></td></tr>
          <tr><td>Temporary password:</td><td><strong>{password}</strong></td></tr>
        </table>
        <p>Sign in at <a href="{login_url}">{login_url}</a> and change your password.</p>
      </div>
    """
    return subject, html


def message_email(message: Optional[str]) -> str:
    """Plain text message as a paragraph per line."""
    lines = [escape(line) for line in (message or "").splitlines()] or [""]
    return "".join(f"<p>{line}</p>" for line in lines)
