#!/usr/bin/env python3
"""
Script to create or promote admin accounts for the transport manager
Run with: python create_admin.py admin@example.com 'a-strong-password' --name "Jane Admin"
"""
import argparse
import uuid
from app import app, db
from models import User, Driver
import validators


def create_admin_user(email, password, name='Administrator'):
    """Create or update a login and give its driver profile the admin role"""
    is_valid, error_msg = validators.validate_password(password)
    if not is_valid:
        raise ValueError(error_msg)

    email = email.strip().lower()
    with app.app_context():
        user = User.query.filter_by(email=email).first()

        if user:
            print(f"User {email} already exists. Updating...")
            user.set_password(password)
            user.active = True
        else:
            print(f"Creating new user: {email}")
            user = User(email=email, active=True)
            user.set_password(password)
            db.session.add(user)

        db.session.flush()  # Get the user ID

        profile = Driver.query.filter_by(user_id=user.id).first() or Driver.query.filter_by(email=email).first()
        if profile:
            print("Profile exists. Updating to admin...")
            profile.user_id = user.id
            profile.role = 'admin'
            profile.status = 'active'
        else:
            print("Creating new admin profile...")
            profile = Driver(
                id=str(uuid.uuid4()),
                user_id=user.id,
                name=name,
                email=email,
                role='admin',
                status='active'
            )
            db.session.add(profile)

        db.session.commit()

        print(f"Admin user '{email}' created/updated successfully!")
        print(f"  User ID: {user.id}")
        print(f"  Profile ID: {profile.id}")

        return user.id, profile.id


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Create or promote an admin account')
    parser.add_argument('email')
    parser.add_argument('password')
    parser.add_argument('--name', default='Administrator')
    args = parser.parse_args()

    create_admin_user(args.email, args.password, name=args.name)
    print("\nAdmin account setup complete!")
