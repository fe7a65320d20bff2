from mergecast import create_app
from mergecast.settings import Settings


def test_healthz(tmp_path):
    app = create_app(Settings(work_dir=tmp_path / 'work'))
    with app.test_client() as c:
        r = c.get('/healthz')
        assert r.status_code == 200
        js = r.get_json()
        assert js['status'] == 'ok'
        assert isinstance(js.get('ffmpeg'), bool)
        assert isinstance(js.get('ffprobe'), bool)
        assert js['publisher'] is False
