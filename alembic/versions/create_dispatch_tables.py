from alembic import op


def upgrade():
    op.execute("""
        CREATE TABLE IF NOT EXISTS drivers (
            id SERIAL PRIMARY KEY,
            name VARCHAR(120) NOT NULL,
            email VARCHAR(255) UNIQUE,
            phone VARCHAR(30),
            pay_rate NUMERIC(10, 2),
            driver_status VARCHAR(20) NOT NULL DEFAULT 'active',
            auth_user_id VARCHAR(64) UNIQUE,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS loads (
            id SERIAL PRIMARY KEY,
            reference_id VARCHAR(64) NOT NULL,
            rate INTEGER NOT NULL DEFAULT 0 CONSTRAINT ck_loads_rate_non_negative CHECK (rate >= 0),
            driver_id INTEGER REFERENCES drivers(id) ON DELETE SET NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'Scheduled',
            load_type VARCHAR(20),
            temperature NUMERIC(6, 1),
            broker_name VARCHAR(255),
            broker_contact VARCHAR(30),
            broker_email VARCHAR(255),
            notes TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS pickups (
            id SERIAL PRIMARY KEY,
            load_id INTEGER NOT NULL REFERENCES loads(id) ON DELETE CASCADE,
            name VARCHAR(255),
            address VARCHAR(255),
            city VARCHAR(120),
            state VARCHAR(30),
            postal_code VARCHAR(20),
            datetime TIMESTAMPTZ
        );

        CREATE TABLE IF NOT EXISTS deliveries (
            id SERIAL PRIMARY KEY,
            load_id INTEGER NOT NULL REFERENCES loads(id) ON DELETE CASCADE,
            name VARCHAR(255),
            address VARCHAR(255),
            city VARCHAR(120),
            state VARCHAR(30),
            postal_code VARCHAR(20),
            datetime TIMESTAMPTZ
        );

        CREATE TABLE IF NOT EXISTS lumper_services (
            id SERIAL PRIMARY KEY,
            load_id INTEGER NOT NULL UNIQUE REFERENCES loads(id) ON DELETE CASCADE,
            no_lumper BOOLEAN NOT NULL DEFAULT FALSE,
            paid_by_broker BOOLEAN NOT NULL DEFAULT FALSE,
            paid_by_company BOOLEAN NOT NULL DEFAULT FALSE,
            paid_by_driver BOOLEAN NOT NULL DEFAULT FALSE,
            broker_amount NUMERIC(10, 2),
            company_amount NUMERIC(10, 2),
            driver_amount NUMERIC(10, 2),
            driver_payment_reason TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS load_documents (
            id SERIAL PRIMARY KEY,
            load_id INTEGER NOT NULL REFERENCES loads(id) ON DELETE CASCADE,
            file_name VARCHAR(255) NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'processing',
            storage_path VARCHAR(1024),
            error_message TEXT,
            original_size INTEGER,
            compressed_size INTEGER,
            compression_ratio DOUBLE PRECISION,
            page_count INTEGER,
            uploaded_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS pay_statements (
            id SERIAL PRIMARY KEY,
            driver_id INTEGER NOT NULL REFERENCES drivers(id) ON DELETE CASCADE,
            period_start DATE NOT NULL,
            period_end DATE NOT NULL,
            gross_pay NUMERIC(12, 2) NOT NULL DEFAULT 0,
            additions JSON NOT NULL DEFAULT '{}',
            deductions JSON NOT NULL DEFAULT '{}',
            notes TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS activity_log (
            id SERIAL PRIMARY KEY,
            activity_type VARCHAR(40) NOT NULL,
            message TEXT NOT NULL,
            load_id INTEGER REFERENCES loads(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_loads_driver_status ON loads(driver_id, status);
        CREATE INDEX IF NOT EXISTS idx_pickups_load_id ON pickups(load_id);
        CREATE INDEX IF NOT EXISTS idx_deliveries_load_id ON deliveries(load_id);
        CREATE INDEX IF NOT EXISTS idx_load_documents_load_id ON load_documents(load_id);
        CREATE INDEX IF NOT EXISTS idx_load_documents_status ON load_documents(status);
        CREATE INDEX IF NOT EXISTS idx_pay_statements_driver_id ON pay_statements(driver_id);
        CREATE INDEX IF NOT EXISTS idx_activity_log_created_at ON activity_log(created_at);
    """)


def downgrade():
    op.execute("""
        DROP TABLE IF EXISTS activity_log CASCADE;
        DROP TABLE IF EXISTS pay_statements CASCADE;
        DROP TABLE IF EXISTS load_documents CASCADE;
        DROP TABLE IF EXISTS lumper_services CASCADE;
        DROP TABLE IF EXISTS deliveries CASCADE;
        DROP TABLE IF EXISTS pickups CASCADE;
        DROP TABLE IF EXISTS loads CASCADE;
        DROP TABLE IF EXISTS drivers CASCADE;
    """)
