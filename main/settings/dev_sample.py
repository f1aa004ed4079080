DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': 'clubportal',
        'USER': 'clubportal',
        'PASSWORD': 'clubportal',
        'HOST': 'localhost',
        'PORT': '5432',
    }
}

# CREATE DATABASE clubportal;
# CREATE USER clubportal WITH PASSWORD 'clubportal';
# ALTER USER clubportal CREATEDB;
# ALTER DATABASE clubportal OWNER TO clubportal;
# GRANT ALL PRIVILEGES ON DATABASE clubportal TO clubportal;

PAYPAL_CLIENT_ID = 'sandbox-client-id'
PAYPAL_CLIENT_SECRET = 'sandbox-client-secret'

ADMINS = [
    ('test', 'test@test.it')
]
