"""Backend for the property management app: signup codes, OTP checks and user administration."""
