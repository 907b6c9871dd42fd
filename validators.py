"""
Form validation helpers for the transport manager.
Each check returns a tuple (is_valid, error_message) so views can
report the first failure back to the user.
"""

import re

# Kenyan mobile numbers in international format: +254 followed by 9 digits
PHONE_PATTERN = re.compile(r'^\+254[0-9]{9}$')
PHONE_FORMAT_HINT = '+254XXXXXXXXX'

MIN_PASSWORD_LENGTH = 8


def is_valid_phone(phone):
    """Check a phone number against the national mobile format"""
    if not phone or not isinstance(phone, str):
        return False
    return PHONE_PATTERN.match(phone.strip()) is not None


def validate_phone(phone, field_name="Phone", required=False):
    """
    Validate a phone number field.
    Blank values pass unless the field is required.
    """
    if not phone or not phone.strip():
        if required:
            return False, f"{field_name} is required"
        return True, ""

    if not is_valid_phone(phone):
        return False, f"{field_name} must be in format {PHONE_FORMAT_HINT}"

    return True, ""


def validate_required(value, field_name):
    """Check that a text field has a non-blank value"""
    if value is None or not str(value).strip():
        return False, f"{field_name} is required"
    return True, ""


def validate_password(password, confirm_password=None):
    """Check password length and, when given, the confirmation"""
    if confirm_password is not None and password != confirm_password:
        return False, "Passwords do not match"
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    return True, ""


def run_checks(*checks):
    """
    Return the first failing (is_valid, error_message) result.
    Returns (True, "") when every check passes.
    """
    for is_valid, error_msg in checks:
        if not is_valid:
            return False, error_msg
    return True, ""


def validate_learner(data):
    """Validate learner fields before they are saved"""
    return run_checks(
        validate_required(data.get('name'), "Learner name"),
        validate_required(data.get('admission_no'), "Admission number"),
        validate_phone(data.get('father_phone'), "Father phone"),
        validate_phone(data.get('mother_phone'), "Mother phone"),
        validate_phone(data.get('house_help_phone'), "House help phone"),
    )
