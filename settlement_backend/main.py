import uvicorn

from settlement_backend.core.registrar import register_app

app = register_app()


if __name__ == '__main__':
    uvicorn.run('settlement_backend.main:app', host='0.0.0.0', port=8000)
